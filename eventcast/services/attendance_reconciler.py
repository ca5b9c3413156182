# eventcast/services/attendance_reconciler.py

"""
Attendance Reconciliation Engine.

Keeps a local accepted/declined/tentative partition per event in sync with
the RSVP state held by the channels. Two sources feed it:

- full refreshes that poll every channel message of the event, and
- push notifications carrying the full state of one message.

Push notifications are delivered at least once, so a notification whose
serialized identity equals the last applied one is dropped. Only the
selected event is refreshed on a timer; selecting another event stops the
previous loop. Events that have finished are closed: push notifications
for them are ignored and they are no longer refreshed on a timer.
"""

import asyncio
import inspect
from typing import Callable, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from eventcast.channels.base import ChannelAdapter, ChannelTimeoutError
from eventcast.models import LEGACY_CHANNEL_KEY
from eventcast.repositories import EventRepository
from eventcast.schemas import AttendanceRecord, AttendanceSnapshot, RSVPUpdateNotification
from eventcast.services.base_service import BaseService
from eventcast.tasks.scheduler import TaskScheduler, attendance_loop_name
from eventcast.utils.timeouts import call_with_timeout

REFRESH_FAILED_NOTICE = 'Attendance could not be refreshed; showing last known responses'


def merge_by_person(record_lists) -> List[AttendanceRecord]:
    """Merge per-message attendance; the first message a person appears in wins."""
    merged = {}
    for records in record_lists:
        for record in records:
            merged.setdefault(record.person_id, record)
    return list(merged.values())


class AttendanceReconciler(BaseService):

    def __init__(self, session: Session, adapter: ChannelAdapter, task_scheduler: Optional[TaskScheduler] = None,
                 refresh_interval=5, channel_timeout=30.0, clock=None):
        super().__init__(session, clock)
        self.adapter = adapter
        self.task_scheduler = task_scheduler
        self.refresh_interval = refresh_interval
        self.channel_timeout = channel_timeout
        self.events = EventRepository(session)

        self._snapshots: Dict[str, AttendanceSnapshot] = {}
        self._per_message: Dict[str, Dict[str, List[AttendanceRecord]]] = {}
        self._message_order: Dict[str, List[str]] = {}
        self._listeners: List[Callable] = []
        self._selected_event_id: Optional[str] = None
        self._generation = 0
        self._last_update_identity: Optional[str] = None
        self._closed: Set[str] = set()

    # ==================== Selection ====================

    @property
    def selected_event_id(self):
        return self._selected_event_id

    def select(self, event):
        """Track ``event`` and refresh it on a timer, replacing any previous selection."""
        event_id = getattr(event, 'id', event)
        if event_id == self._selected_event_id:
            return
        self.deselect()
        self._selected_event_id = event_id
        self._generation += 1
        event = self.events.get_fresh(event_id)
        self._remember_message_order(event)
        if event is not None and event.concluded_at is not None:
            self._closed.add(event_id)
        if self.task_scheduler is not None and event_id not in self._closed:
            self.task_scheduler.start_loop(
                attendance_loop_name(event_id), self.refresh_interval, lambda: self._refresh_tick(event_id)
            )
        self.logger.info(f"👀 Tracking attendance for event {event_id}")

    def deselect(self):
        previous = self._selected_event_id
        if previous is None:
            return
        self._selected_event_id = None
        self._generation += 1
        if self.task_scheduler is not None:
            self.task_scheduler.cancel_loop(attendance_loop_name(previous))
        self.logger.info(f"Stopped tracking attendance for event {previous}")

    async def _refresh_tick(self, event_id):
        if event_id != self._selected_event_id or event_id in self._closed:
            return False
        await self.refresh(event_id)

    # ==================== Listeners ====================

    def add_listener(self, callback: Callable):
        """Register ``callback(event_id, snapshot)``; coroutine functions are awaited."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable):
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def _notify(self, event_id, snapshot):
        for callback in list(self._listeners):
            try:
                outcome = callback(event_id, snapshot)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                self.logger.error(f"Attendance listener failed for event {event_id}: {e}", exc_info=True)

    # ==================== Queries ====================

    def partition(self, event_id) -> Optional[AttendanceSnapshot]:
        return self._snapshots.get(event_id)

    def _remember_message_order(self, event):
        if event is None:
            return []
        order = [
            info['message_id'] for channel_id, info in event.publications().items()
            if channel_id != LEGACY_CHANNEL_KEY
        ]
        self._message_order[event.id] = order
        return order

    # ==================== Full refresh ====================

    async def refresh(self, event) -> Optional[AttendanceSnapshot]:
        """
        Poll every channel message of the event and replace its partition.

        If any channel cannot be read the previous snapshot is kept, marked
        stale and announced with a notice. A refresh of the selected event
        that completes after it was deselected is discarded.
        """
        event_id = getattr(event, 'id', event)
        generation = self._generation
        tracked = event_id == self._selected_event_id

        event = self.events.get_fresh(event_id)
        if event is None:
            self.logger.warning(f"Attendance refresh skipped: event {event_id} not found")
            return None

        publications = [
            (channel_id, info['message_id']) for channel_id, info in event.publications().items()
            if channel_id != LEGACY_CHANNEL_KEY
        ]
        self._message_order[event_id] = [message_id for _, message_id in publications]

        outcomes = await asyncio.gather(
            *(call_with_timeout(
                self.adapter.fetch_attendance(channel_id, message_id),
                self.channel_timeout,
                operation=f"attendance fetch on channel {channel_id}",
                error_cls=ChannelTimeoutError,
            ) for channel_id, message_id in publications),
            return_exceptions=True
        )

        if tracked and (self._generation != generation or self._selected_event_id != event_id):
            self.logger.debug(f"Discarding attendance refresh for deselected event {event_id}")
            return None

        failures = [o for o in outcomes if isinstance(o, BaseException)]
        if failures:
            for failure in failures:
                if isinstance(failure, asyncio.CancelledError):
                    raise failure
            self.logger.warning(
                f"⚠️ Attendance refresh for event {event_id} failed on {len(failures)} channel(s): {failures[0]}"
            )
            previous = self._snapshots.get(event_id)
            if previous is None:
                stale = AttendanceSnapshot(
                    event_id=event_id, fetched_at=self.now(), stale=True, notice=REFRESH_FAILED_NOTICE
                )
            else:
                stale = previous.model_copy(update={'stale': True, 'notice': REFRESH_FAILED_NOTICE})
                self._snapshots[event_id] = stale
            await self._notify(event_id, stale)
            return stale

        per_message = {
            message_id: list(records) for (_, message_id), records in zip(publications, outcomes)
        }
        self._per_message[event_id] = per_message
        snapshot = self._build_snapshot(event_id)
        self._snapshots[event_id] = snapshot
        await self._notify(event_id, snapshot)
        return snapshot

    def _build_snapshot(self, event_id):
        per_message = self._per_message.get(event_id, {})
        order = self._message_order.get(event_id) or list(per_message)
        ordered = [per_message[m] for m in order if m in per_message]
        ordered += [records for m, records in per_message.items() if m not in order]
        return AttendanceSnapshot.from_records(event_id, merge_by_person(ordered), self.now())

    # ==================== Push updates ====================

    async def apply_update(self, notification: RSVPUpdateNotification) -> bool:
        """
        Apply a push notification to the selected event.

        Returns True when the partition changed.
        """
        event_id = self._selected_event_id
        if event_id is None:
            return False
        if event_id in self._closed:
            self.logger.debug(f"Ignoring update for closed event {event_id}")
            return False
        if notification.message_id not in self._message_order.get(event_id, []):
            self.logger.debug(f"Ignoring update for untracked message {notification.message_id}")
            return False

        identity = notification.identity()
        if identity == self._last_update_identity:
            self.logger.debug(f"Dropping duplicate update for message {notification.message_id}")
            return False
        self._last_update_identity = identity

        self._per_message.setdefault(event_id, {})[notification.message_id] = list(notification.attendance)
        snapshot = self._build_snapshot(event_id)
        self._snapshots[event_id] = snapshot
        self.logger.info(
            f"🔄 Applied attendance update for event {event_id} from message {notification.message_id}: "
            f"{snapshot.counts()}"
        )
        await self._notify(event_id, snapshot)
        return True

    def forget(self, event_id):
        """Drop all cached state for an event (used when it is deleted)."""
        if event_id == self._selected_event_id:
            self.deselect()
        self._snapshots.pop(event_id, None)
        self._per_message.pop(event_id, None)
        self._message_order.pop(event_id, None)
        self._closed.discard(event_id)

    # ==================== Closing ====================

    def close(self, event_id):
        """Stop accepting RSVP changes for a finished event."""
        self._closed.add(event_id)
        if event_id == self._selected_event_id and self.task_scheduler is not None:
            self.task_scheduler.cancel_loop(attendance_loop_name(event_id))
        self.logger.info(f"🔒 Closed RSVPs for event {event_id}")

    def reopen(self, event_id):
        if event_id not in self._closed:
            return
        self._closed.discard(event_id)
        if event_id == self._selected_event_id and self.task_scheduler is not None:
            self.task_scheduler.start_loop(
                attendance_loop_name(event_id), self.refresh_interval, lambda: self._refresh_tick(event_id)
            )
        self.logger.info(f"Reopened RSVPs for event {event_id}")

    def is_closed(self, event_id):
        return event_id in self._closed
