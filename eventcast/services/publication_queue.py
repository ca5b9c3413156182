# eventcast/services/publication_queue.py

"""
Scheduled Publication Queue.

Durable (event, due-time) entries promoted to real publications by a
poller. Each event has at most one entry; an entry is either pending,
sent, or gone (cancelled). Failed publications stay pending and are
retried on every tick.
"""

from dataclasses import dataclass

from sqlalchemy.orm import Session

from eventcast.repositories import EventRepository, ScheduledPublicationRepository
from eventcast.services.base_service import BaseService, ValidationError
from eventcast.utils.datetime_utils import to_naive_utc


@dataclass
class PollResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0


class ScheduledPublicationQueue(BaseService):

    def __init__(self, session: Session, orchestrator, imminent_window=300, clock=None):
        super().__init__(session, clock)
        self.orchestrator = orchestrator
        self.imminent_window = imminent_window
        self.events = EventRepository(session)
        self.entries = ScheduledPublicationRepository(session)
        self._in_flight = set()

    def schedule(self, event_id, due_time):
        """Create or move the single pending entry for an unpublished event."""
        event = self.events.get_fresh(event_id)
        if event is None:
            raise ValidationError(f"Cannot schedule unknown event {event_id}", 'EVENT_NOT_FOUND')
        if event.is_published:
            raise ValidationError(
                f"Event {event_id} is already published and cannot be scheduled",
                'ALREADY_PUBLISHED'
            )

        entry = self.entries.upsert(event_id, to_naive_utc(due_time))
        self.logger.info(f"🗓️ Event {event_id} scheduled for publication at {entry.scheduled_time.isoformat()}")
        return entry

    def cancel(self, event_id) -> bool:
        removed = self.entries.cancel(event_id)
        if removed:
            self.logger.info(f"🚫 Cancelled scheduled publication for event {event_id}")
        return removed

    def has_imminent(self, window=None) -> bool:
        """Whether any pending entry is due within ``window`` seconds."""
        window = self.imminent_window if window is None else window
        return bool(self.entries.imminent(self.now(), window))

    async def poll(self) -> PollResult:
        """Publish every due entry once; safe to call from overlapping ticks."""
        result = PollResult()
        due = self.entries.due(self.now())
        if not due:
            return result

        self.logger.info(f"📬 Found {len(due)} due scheduled publication(s)")
        for entry in due:
            entry_id = entry.id
            event_id = entry.event_id
            if entry_id in self._in_flight:
                result.skipped += 1
                continue

            self._in_flight.add(entry_id)
            try:
                await self._process(entry_id, event_id, result)
            finally:
                self._in_flight.discard(entry_id)

        if result.processed or result.failed:
            self.logger.info(
                f"Scheduled publication tick: {result.processed} published, "
                f"{result.failed} failed, {result.skipped} skipped"
            )
        return result

    async def _process(self, entry_id, event_id, result):
        if not self.entries.is_still_pending(entry_id):
            result.skipped += 1
            return

        event = self.events.get_fresh(event_id)
        if event is None:
            self.entries.record_failure(entry_id, 'Event no longer exists')
            result.failed += 1
            return

        if event.is_published:
            self.logger.info(f"Event {event_id} already published; marking scheduled entry as sent")
            self.entries.mark_sent(entry_id, self.now())
            result.skipped += 1
            return

        try:
            publication = await self.orchestrator.publish(event)
        except Exception as e:
            self._log_operation_error('poll', e, event_id=event_id)
            self.entries.record_failure(entry_id, str(e))
            result.failed += 1
            return

        if publication.success:
            self.entries.mark_sent(entry_id, self.now())
            result.processed += 1
            self.logger.info(
                f"✅ Scheduled publication for event {event_id} sent to {len(publication.published)} channel(s)"
            )
        else:
            reason = publication.validation_error or '; '.join(
                f"{e.channel_id}: {e.message}" for e in publication.errors
            ) or 'No channel accepted the publication'
            self.entries.record_failure(entry_id, reason)
            result.failed += 1
            self.logger.warning(f"⚠️ Scheduled publication for event {event_id} failed: {reason}")
