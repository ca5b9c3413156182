# eventcast/services/reminder_scheduler.py

"""
Reminder Scheduler Service.

Each event carries up to two reminders ("first" and "second"), each an
offset before the event start with its own audience filter. Fire times are
persisted as EventReminder rows; unsent rows are recomputed on every edit
and sent rows stay behind as history.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from eventcast.channels.base import ChannelAdapter, ChannelTimeoutError
from eventcast.models import EventReminder, LEGACY_CHANNEL_KEY
from eventcast.repositories import EventRepository, ReminderRepository
from eventcast.schemas import ReminderConfig
from eventcast.services.base_service import BaseService, NotFoundError, ValidationError
from eventcast.services.roster import RosterProvider
from eventcast.utils.datetime_utils import offset_to_timedelta, describe_time_until, format_local_time
from eventcast.utils.timeouts import call_with_timeout


@dataclass
class ReminderRunResult:
    sent: int = 0
    skipped: int = 0
    deferred: int = 0
    failed_channels: int = 0


class AttendanceUnavailableError(Exception):
    """Attendance for a reminder could not be read and no earlier data exists."""


def coerce_reminder_config(value) -> Optional[ReminderConfig]:
    if value is None:
        return None
    if isinstance(value, ReminderConfig):
        return value
    if isinstance(value, dict):
        return ReminderConfig.model_validate(value)
    raise ValidationError(f"Invalid reminder configuration: {value!r}")


def format_reminder_message(event, now, default_timezone='America/New_York'):
    time_until = describe_time_until(event.start_time, now)
    local_time = format_local_time(event.start_time, event.timezone, default_timezone)
    return f"REMINDER: Event starting {time_until}!\n{event.title}\n{local_time}"


class ReminderScheduler(BaseService):

    def __init__(self, session: Session, adapter: ChannelAdapter, reconciler=None,
                 roster: RosterProvider = None, channel_timeout=30.0,
                 default_timezone='America/New_York', clock=None):
        super().__init__(session, clock)
        self.adapter = adapter
        self.reconciler = reconciler
        self.roster = roster or RosterProvider()
        self.channel_timeout = channel_timeout
        self.default_timezone = default_timezone
        self.events = EventRepository(session)
        self.reminders = ReminderRepository(session)

    # ==================== Scheduling ====================

    def schedule(self, event_id, start_time, reminder_config) -> List[EventReminder]:
        """
        Persist fire times for every enabled slot, replacing unsent rows.

        A slot whose fire time is already in the past is skipped rather than
        fired late.
        """
        config = coerce_reminder_config(reminder_config)
        self.reminders.cancel_unsent(event_id)
        if config is None:
            return []

        now = self.now()
        rows = []
        for slot, spec in config.slots():
            if not spec.recipients.any_selected():
                self.logger.info(f"⏭️ Skipping {slot} reminder for event {event_id}: no recipients selected")
                continue
            fire_time = start_time - offset_to_timedelta(spec.value, spec.unit)
            if fire_time <= now:
                self.logger.info(
                    f"⏭️ Skipping {slot} reminder for event {event_id}: fire time {fire_time} already passed"
                )
                continue
            rows.append(EventReminder(
                event_id=event_id,
                reminder_type=slot,
                scheduled_time=fire_time,
                sent=False,
                notify_accepted=spec.recipients.accepted,
                notify_tentative=spec.recipients.tentative,
                notify_declined=spec.recipients.declined,
                notify_no_response=spec.recipients.no_response,
            ))

        if rows:
            self.reminders.create_many(rows)
            self.logger.info(
                f"⏰ Scheduled {len(rows)} reminder(s) for event {event_id}: "
                + ", ".join(f"{r.reminder_type}@{r.scheduled_time.isoformat()}" for r in rows)
            )
        return rows

    def reschedule(self, event_id, new_start_time=None, new_reminder_config=None) -> List[EventReminder]:
        """
        Recompute reminders after an edit.

        Without an explicit config the event's stored settings are used; an
        event that only has reminder history gets a single 15-minute reminder;
        otherwise nothing is scheduled.
        """
        event = self.events.get_fresh(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found", 'EVENT_NOT_FOUND')

        if not event.is_published:
            self.reminders.cancel_unsent(event_id)
            return []

        start_time = new_start_time or event.start_time
        config = coerce_reminder_config(new_reminder_config)
        if config is None and event.reminder_settings:
            config = coerce_reminder_config(event.reminder_settings)
        if config is None and self.reminders.has_history(event_id):
            self.logger.info(f"Event {event_id} has reminder history but no settings; using 15-minute default")
            config = ReminderConfig.default_single()

        return self.schedule(event_id, start_time, config)

    def cancel(self, event_id) -> int:
        removed = self.reminders.cancel_unsent(event_id)
        if removed:
            self.logger.info(f"🚫 Cancelled {removed} pending reminder(s) for event {event_id}")
        return removed

    # ==================== Delivery ====================

    async def process_due(self) -> ReminderRunResult:
        """
        Send every due reminder and mark it sent.

        A reminder whose attendance cannot be read stays pending and is
        retried on the next tick, until the event starts.
        """
        result = ReminderRunResult()
        now = self.now()
        due = self.reminders.due(now)
        if not due:
            return result

        self.logger.info(f"🔔 Processing {len(due)} due reminder(s)")
        for reminder in due:
            reminder_id = reminder.id
            try:
                sent, failures = await self._deliver(reminder, now)
            except AttendanceUnavailableError as e:
                event = self.events.get_fresh(reminder.event_id)
                if event is not None and event.start_time > now:
                    self.logger.warning(f"⚠️ Deferring reminder {reminder_id}: {e}")
                    result.deferred += 1
                    continue
                self.logger.warning(f"Giving up on reminder {reminder_id}, event already started: {e}")
                sent, failures = False, 0
            except Exception as e:
                self._log_operation_error('process_due', e, reminder_id=reminder_id)
                continue
            if sent:
                result.sent += 1
            else:
                result.skipped += 1
            result.failed_channels += failures
            self.reminders.mark_sent(reminder_id, self.now())
        return result

    async def _deliver(self, reminder, now):
        event = self.events.get_fresh(reminder.event_id)
        if event is None:
            return False, 0

        channels = self._unique_channels(event.publications())
        if not channels:
            self.logger.info(f"No channel publications for reminder {reminder.id}, marking as sent")
            return False, 0

        recipients = await self.resolve_recipients(event, reminder.recipients)
        if not recipients:
            self.logger.info(f"No eligible recipients for reminder {reminder.id}, marking as sent")
            return False, 0

        text = format_reminder_message(event, now, self.default_timezone)
        mentions = " ".join(self.adapter.format_mention(pid, name) for pid, name in recipients)
        content = f"{text}\n{mentions}"

        outcomes = await asyncio.gather(
            *(self._send(channel_id, content) for channel_id in channels),
            return_exceptions=True
        )
        failures = 0
        for channel_id, outcome in zip(channels, outcomes):
            if isinstance(outcome, Exception):
                failures += 1
                self.logger.error(f"❌ Failed to send reminder {reminder.id} to channel {channel_id}: {outcome}")
        self.logger.info(
            f"✅ Reminder {reminder.id} ({reminder.reminder_type}) sent to "
            f"{len(channels) - failures}/{len(channels)} channel(s), {len(recipients)} recipient(s)"
        )
        return True, failures

    async def _send(self, channel_id, content):
        return await call_with_timeout(
            self.adapter.send_message(channel_id, content),
            self.channel_timeout,
            operation=f"send reminder to {channel_id}",
            error_cls=ChannelTimeoutError,
        )

    @staticmethod
    def _unique_channels(publications):
        """One message per (guild, channel); the legacy key has no addressable channel."""
        seen = set()
        channels = []
        for channel_id, info in publications.items():
            if channel_id == LEGACY_CHANNEL_KEY:
                continue
            key = f"{info.get('guild_id') or ''}:{channel_id}"
            if key in seen:
                continue
            seen.add(key)
            channels.append(channel_id)
        return channels

    async def resolve_recipients(self, event, recipients):
        """
        Resolve a recipient filter against the current attendance partition.

        The cached partition is only trusted while the event is selected and
        fresh; otherwise the channels are polled again. Returns a list of
        (person_id, display_name) pairs without duplicates.
        """
        snapshot = None
        if self.reconciler is not None:
            snapshot = await self._current_attendance(event)

        selected = {}
        if snapshot is not None:
            for status in ('accepted', 'tentative', 'declined'):
                if not recipients.get(status):
                    continue
                for record in getattr(snapshot, status):
                    selected.setdefault(record.person_id, record.display_name)

        if recipients.get('no_response'):
            responded = snapshot.person_ids() if snapshot is not None else set()
            for member in self.roster.members_for_groups(event.participants or []):
                if member.person_id not in responded:
                    selected.setdefault(member.person_id, member.display_name)

        return list(selected.items())

    async def _current_attendance(self, event):
        cached = self.reconciler.partition(event.id)
        if cached is not None and not cached.stale and self.reconciler.selected_event_id == event.id:
            return cached

        snapshot = await self.reconciler.refresh(event)
        # A failed refresh only leaves usable data when an earlier snapshot existed
        if snapshot is None or (snapshot.stale and self.reconciler.partition(event.id) is None):
            raise AttendanceUnavailableError(f"attendance for event {event.id} could not be read")
        return snapshot
