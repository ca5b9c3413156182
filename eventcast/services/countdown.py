# eventcast/services/countdown.py

"""
Countdown Service.

Published announcements carry a countdown to the event start. The text is
re-rendered on an adaptive schedule: every minute in the last hour, every
15 minutes within six hours, hourly within a day and daily before that.
Once the event has started the message shows "Happening Now" until the
end time, when it gets one final "finished" edit, is marked concluded and
stops taking RSVPs.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy.orm import Session

from eventcast.repositories import EventRepository
from eventcast.services.base_service import BaseService

HOUR = 3600


@dataclass
class CountdownRunResult:
    refreshed: int = 0
    concluded: int = 0
    failed: int = 0


def countdown_interval(start_time, now) -> Optional[int]:
    """Seconds until the next countdown edit, or None once the event has started."""
    remaining = (start_time - now).total_seconds()
    if remaining <= 0:
        return None
    if remaining <= HOUR:
        return 60
    if remaining <= 6 * HOUR:
        return 15 * 60
    if remaining <= 24 * HOUR:
        return HOUR
    return 24 * HOUR


class CountdownService(BaseService):

    def __init__(self, session: Session, orchestrator, reconciler=None, clock=None):
        super().__init__(session, clock)
        self.orchestrator = orchestrator
        self.reconciler = reconciler
        self.events = EventRepository(session)
        self._next_refresh: Dict[str, object] = {}

    def next_refresh_time(self, event, now):
        interval = countdown_interval(event.start_time, now)
        if interval is None:
            return event.end_time
        return min(now + timedelta(seconds=interval), event.start_time)

    async def tick(self) -> CountdownRunResult:
        """Re-render due countdowns and conclude events past their end time."""
        result = CountdownRunResult()
        now = self.now()
        live = self.events.fetch_live_events()

        for event in live:
            event_id = event.id
            try:
                if now >= event.end_time:
                    await self.conclude(event_id)
                    result.concluded += 1
                    continue

                due = self._next_refresh.get(event_id)
                if due is None:
                    self._next_refresh[event_id] = self.next_refresh_time(event, now)
                    continue
                if now < due:
                    continue

                await self.orchestrator.update(event_id)
                self._next_refresh[event_id] = self.next_refresh_time(event, now)
                result.refreshed += 1
            except Exception as e:
                result.failed += 1
                self.logger.error(f"❌ Countdown refresh failed for event {event_id}: {e}", exc_info=True)

        live_ids = {event.id for event in live}
        for event_id in [e for e in self._next_refresh if e not in live_ids]:
            del self._next_refresh[event_id]

        if result.refreshed or result.concluded or result.failed:
            self.logger.info(
                f"⏳ Countdown tick: {result.refreshed} refreshed, "
                f"{result.concluded} concluded, {result.failed} failed"
            )
        return result

    async def conclude(self, event_id):
        """Post the final edit, then stop countdown updates and RSVPs for the event."""
        outcome = await self.orchestrator.update(event_id)
        if outcome.errors:
            self.logger.warning(
                f"⚠️ Final update for event {event_id} failed on {len(outcome.errors)} channel(s)"
            )
        self.events.update(event_id, {'concluded_at': self.now()})
        self._next_refresh.pop(event_id, None)
        if self.reconciler is not None:
            self.reconciler.close(event_id)
        self.logger.info(f"🏁 Event {event_id} has finished")
