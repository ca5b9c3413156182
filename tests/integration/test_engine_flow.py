"""
End-to-end flow through the assembled engine: schedule, publish on poll,
remind, then delete.
"""
import pytest
from datetime import timedelta

from eventcast.models import Event, EventReminder
from eventcast.tasks.scheduler import PUBLICATION_FAST_POLL
from tests.factories import BASE_TIME
from tests.helpers import record


@pytest.mark.integration
@pytest.mark.asyncio
async def test_scheduled_event_lifecycle(engine, adapter, clock, db_session):
    """
    GIVEN an event scheduled to publish in one minute with a 30-minute reminder
    WHEN the clock passes the due time and later the reminder time
    THEN the event is posted to its group channel, the reminder mentions the
    attendee, and deleting the event removes the channel message
    """
    start = BASE_TIME + timedelta(hours=2)
    created = await engine.events.create_event({
        'title': 'Members Meetup',
        'start_time': start,
        'participants': ['grp-a'],
        'reminder_settings': {'first': {'enabled': True, 'value': 30, 'unit': 'minutes'}},
        'scheduled_publication': BASE_TIME + timedelta(minutes=1),
    })
    event_id = created.data['id']

    # Due within the imminent window, so the fast poll is running
    assert engine.task_scheduler.is_running(PUBLICATION_FAST_POLL)

    clock.advance(minutes=2)
    poll = await engine.queue.poll()

    assert poll.processed == 1
    event = db_session.get(Event, event_id, populate_existing=True)
    message_id = event.publications()['c-a']['message_id']
    reminder = db_session.query(EventReminder).filter_by(event_id=event_id).one()
    assert reminder.scheduled_time == start - timedelta(minutes=30)

    adapter.attendance[message_id] = [record('u1', 'Alice', 'accepted'), record('u2', 'Bob', 'declined')]
    clock.current = start - timedelta(minutes=29)
    reminders = await engine.reminders.process_due()

    assert reminders.sent == 1
    channel_id, content = adapter.sent[0]
    assert channel_id == 'c-a'
    assert content.startswith('REMINDER: Event starting in 29 minutes!\nMembers Meetup')
    assert '@Alice' in content and '@Bob' not in content

    deleted = await engine.events.delete_event(event_id)

    assert deleted.message == 'Event deleted'
    assert adapter.delete_attempts == [('c-a', message_id)]
    await engine.stop()
