# eventcast/repositories/event_repository.py

"""
Event and Cycle persistence.

``write_channel_publications`` is the only path that mutates an event's
channel map; it re-reads the row before merging so concurrent writers
never clobber each other's entries.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from eventcast.models import Event, Cycle, normalize_channel_publications
from eventcast.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class EventRepository(BaseRepository[Event]):

    def __init__(self, session: Session):
        super().__init__(session, Event)

    def create(self, **fields) -> Event:
        event = Event(**fields)
        self.session.add(event)
        self.session.commit()
        logger.info(f"Created event {event.id} ({event.title!r})")
        return event

    def update(self, event_id: str, fields: dict) -> Optional[Event]:
        event = self.get_fresh(event_id)
        if event is None:
            return None
        for key, value in fields.items():
            setattr(event, key, value)
        self.session.commit()
        return event

    def delete_event(self, event_id: str) -> bool:
        event = self.get_by_id(event_id)
        if event is None:
            return False
        self.session.delete(event)
        self.session.commit()
        return True

    def fetch_events(self, cycle_id: Optional[str] = None) -> List[Event]:
        stmt = select(Event).order_by(Event.start_time.asc())
        if cycle_id is not None:
            stmt = stmt.where(Event.cycle_id == cycle_id)
        return list(self.session.scalars(stmt))

    def fetch_live_events(self) -> List[Event]:
        """Published events that have not been concluded yet."""
        stmt = (
            select(Event)
            .where(Event.concluded_at.is_(None))
            .order_by(Event.start_time.asc())
            .execution_options(populate_existing=True)
        )
        return [event for event in self.session.scalars(stmt) if event.is_published]

    def write_channel_publications(self, event_id: str, added=None, removed=None, replace=None) -> dict:
        """
        Merge publication changes into the freshly read stored map and commit.

        Args:
            added: mapping of channel_id -> publication info to set
            removed: iterable of channel ids to drop
            replace: full map that overrides the stored one

        Returns:
            The resulting structured map ({} if the event no longer exists).
        """
        event = self.get_fresh(event_id)
        if event is None:
            logger.warning(f"Event {event_id} disappeared before publications could be written")
            return {}

        if replace is not None:
            current = normalize_channel_publications(replace)
        else:
            current = event.publications()
        if added:
            current.update(normalize_channel_publications(added))
        for channel_id in removed or ():
            current.pop(str(channel_id), None)

        event.channel_publications = current
        self.session.commit()
        return event.publications()

    def migrate_legacy_publications(self) -> int:
        """
        Rewrite rows whose channel map is stored in an outdated shape.

        Returns the number of rows rewritten.
        """
        migrated = 0
        for event in self.session.scalars(select(Event)):
            raw = event.channel_publications
            normalized = normalize_channel_publications(raw)
            if raw != normalized:
                event.channel_publications = normalized
                migrated += 1
        if migrated:
            self.session.commit()
            logger.info(f"Migrated {migrated} legacy channel publication records")
        return migrated


class CycleRepository(BaseRepository[Cycle]):

    def __init__(self, session: Session):
        super().__init__(session, Cycle)

    def create(self, **fields) -> Cycle:
        return self.save(Cycle(**fields))

    def update(self, cycle_id: str, fields: dict) -> Optional[Cycle]:
        cycle = self.get_fresh(cycle_id)
        if cycle is None:
            return None
        for key, value in fields.items():
            setattr(cycle, key, value)
        self.session.commit()
        return cycle

    def delete_cycle(self, cycle_id: str) -> bool:
        cycle = self.get_by_id(cycle_id)
        if cycle is None:
            return False
        self.session.delete(cycle)
        self.session.commit()
        return True

    def list_cycles(self) -> List[Cycle]:
        return list(self.session.scalars(select(Cycle).order_by(Cycle.start_date.asc())))

    def event_count(self, cycle_id: str) -> int:
        return len(list(self.session.scalars(select(Event.id).where(Event.cycle_id == cycle_id))))
