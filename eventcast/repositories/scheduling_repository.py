# eventcast/repositories/scheduling_repository.py

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from eventcast.models import ScheduledPublicationEntry, EventReminder
from eventcast.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class ScheduledPublicationRepository(BaseRepository[ScheduledPublicationEntry]):
    """Durable (event, due-time) entries for deferred publication."""

    def __init__(self, session: Session):
        super().__init__(session, ScheduledPublicationEntry)

    def get_for_event(self, event_id: str) -> Optional[ScheduledPublicationEntry]:
        return self.find_one_by(event_id=event_id)

    def upsert(self, event_id: str, due_time) -> ScheduledPublicationEntry:
        """One row per event: editing the schedule updates the same row."""
        entry = self.get_for_event(event_id)
        if entry is None:
            entry = ScheduledPublicationEntry(event_id=event_id, scheduled_time=due_time, sent=False)
            self.session.add(entry)
        else:
            entry.scheduled_time = due_time
            entry.sent = False
            entry.sent_at = None
            entry.last_error = None
        self.session.commit()
        return entry

    def cancel(self, event_id: str) -> bool:
        """Delete the pending entry for an event. Returns True if one was removed."""
        result = self.session.execute(
            delete(ScheduledPublicationEntry).where(
                ScheduledPublicationEntry.event_id == event_id,
                ScheduledPublicationEntry.sent.is_(False),
            )
        )
        self.session.commit()
        return result.rowcount > 0

    def due(self, now) -> List[ScheduledPublicationEntry]:
        stmt = (
            select(ScheduledPublicationEntry)
            .where(
                ScheduledPublicationEntry.sent.is_(False),
                ScheduledPublicationEntry.scheduled_time <= now,
            )
            .order_by(ScheduledPublicationEntry.scheduled_time.asc())
        )
        return list(self.session.scalars(stmt))

    def imminent(self, now, window_seconds) -> List[ScheduledPublicationEntry]:
        stmt = select(ScheduledPublicationEntry).where(
            ScheduledPublicationEntry.sent.is_(False),
            ScheduledPublicationEntry.scheduled_time <= now + timedelta(seconds=window_seconds),
        )
        return list(self.session.scalars(stmt))

    def is_still_pending(self, entry_id) -> bool:
        """Fresh read of the sent flag."""
        entry = self.get_fresh(entry_id)
        return entry is not None and not entry.sent

    def mark_sent(self, entry_id, sent_at) -> None:
        entry = self.get_fresh(entry_id)
        if entry is None:
            return
        entry.sent = True
        entry.sent_at = sent_at
        entry.last_error = None
        self.session.commit()

    def mark_superseded(self, event_id: str, sent_at) -> bool:
        """Close out an event's pending entry after it was published by other means."""
        entry = self.get_for_event(event_id)
        if entry is None or entry.sent:
            return False
        entry.sent = True
        entry.sent_at = sent_at
        entry.last_error = None
        self.session.commit()
        return True

    def record_failure(self, entry_id, error: str) -> None:
        entry = self.get_fresh(entry_id)
        if entry is None:
            return
        entry.last_error = error
        self.session.commit()


class ReminderRepository(BaseRepository[EventReminder]):
    """Persisted reminder fire times; sent rows are kept as history."""

    def __init__(self, session: Session):
        super().__init__(session, EventReminder)

    def create_many(self, reminders: List[EventReminder]) -> List[EventReminder]:
        self.session.add_all(reminders)
        self.session.commit()
        return reminders

    def for_event(self, event_id: str, include_sent=True) -> List[EventReminder]:
        stmt = select(EventReminder).where(EventReminder.event_id == event_id)
        if not include_sent:
            stmt = stmt.where(EventReminder.sent.is_(False))
        return list(self.session.scalars(stmt.order_by(EventReminder.scheduled_time.asc())))

    def has_history(self, event_id: str) -> bool:
        stmt = select(EventReminder.id).where(EventReminder.event_id == event_id).limit(1)
        return self.session.scalars(stmt).first() is not None

    def cancel_unsent(self, event_id: str) -> int:
        result = self.session.execute(
            delete(EventReminder).where(
                EventReminder.event_id == event_id,
                EventReminder.sent.is_(False),
            )
        )
        self.session.commit()
        return result.rowcount

    def due(self, now) -> List[EventReminder]:
        stmt = (
            select(EventReminder)
            .where(EventReminder.sent.is_(False), EventReminder.scheduled_time <= now)
            .order_by(EventReminder.scheduled_time.asc())
        )
        return list(self.session.scalars(stmt))

    def mark_sent(self, reminder_id, sent_at) -> None:
        reminder = self.get_fresh(reminder_id)
        if reminder is None or reminder.sent:
            return
        reminder.sent = True
        reminder.sent_at = sent_at
        self.session.commit()
