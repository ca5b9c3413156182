"""
EventService unit tests.

Exercises the full engine through the service entry points: validation
before side effects, create/update/delete messages that qualify channel
problems, reminder recomputation on edit, and cycle rules.
"""
import asyncio
import time
import pytest
from datetime import datetime, timedelta, timezone

from eventcast.models import Event, EventReminder, ScheduledPublicationEntry
from eventcast.repositories import EventRepository
from eventcast.services.base_service import ConflictError, NotFoundError, ValidationError
from tests.factories import BASE_TIME, CycleFactory, EventFactory, EventReminderFactory, publications_for

START = BASE_TIME + timedelta(days=3)


def event_payload(**overrides):
    payload = {
        'title': 'Season Kickoff',
        'description': 'Opening night',
        'start_time': START,
    }
    payload.update(overrides)
    return payload


# =============================================================================
# CREATE
# =============================================================================

@pytest.mark.unit
class TestCreateEvent:

    @pytest.mark.asyncio
    async def test_create_without_publication(self, engine, adapter):
        result = await engine.events.create_event(event_payload())

        assert result.success is True
        assert result.message == 'Event created'
        assert result.data['end_time'] == (START + timedelta(hours=1)).isoformat()
        assert result.data['is_published'] is False
        assert adapter.created == []

    @pytest.mark.asyncio
    async def test_aware_start_time_is_stored_as_utc(self, engine):
        start = datetime(2025, 6, 10, 19, 0, tzinfo=timezone(timedelta(hours=-4)))

        result = await engine.events.create_event(event_payload(start_time=start))

        assert result.data['start_time'] == '2025-06-10T23:00:00'

    @pytest.mark.asyncio
    async def test_create_and_publish_with_partial_failure(self, engine, adapter):
        """
        GIVEN two channels where one rejects the post
        WHEN creating an event with publish_now
        THEN the record exists and the message names the failed channel count
        """
        adapter.fail('create', 'c2')

        result = await engine.events.create_event(event_payload(
            publish_now=True,
            channels=[{'channel_id': 'c1', 'guild_id': 'g1'}, {'channel_id': 'c2', 'guild_id': 'g1'}],
        ))

        assert result.success is True
        assert result.message == 'Event created and published; 1 channel failed'
        assert [e.channel_id for e in result.errors] == ['c2']
        assert list(result.data['channel_publications']) == ['c1']

    @pytest.mark.asyncio
    async def test_create_and_publish_without_channels(self, engine):
        result = await engine.events.create_event(event_payload(publish_now=True))

        assert result.success is True
        assert result.message == 'Event created but failed to publish: No channels configured for this event'

    @pytest.mark.asyncio
    async def test_create_with_scheduled_publication(self, engine, db_session):
        due = BASE_TIME + timedelta(days=1)

        result = await engine.events.create_event(event_payload(scheduled_publication=due))

        assert result.message == f'Event created; publication scheduled for {due.isoformat()}'
        entry = db_session.query(ScheduledPublicationEntry).one()
        assert entry.scheduled_time == due
        assert result.data['scheduled_publication'] == due.isoformat()

    @pytest.mark.asyncio
    async def test_invalid_time_range_fails_before_any_side_effect(self, engine, db_session):
        with pytest.raises(ValidationError) as exc_info:
            await engine.events.create_event(event_payload(end_time=START - timedelta(hours=1)))

        assert exc_info.value.error_code == 'INVALID_TIME_RANGE'
        assert db_session.query(Event).count() == 0

    @pytest.mark.asyncio
    async def test_publish_now_and_schedule_are_mutually_exclusive(self, engine, db_session):
        with pytest.raises(ValidationError):
            await engine.events.create_event(event_payload(
                publish_now=True, scheduled_publication=BASE_TIME + timedelta(days=1)
            ))

        assert db_session.query(Event).count() == 0

    @pytest.mark.asyncio
    async def test_missing_title_is_rejected(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            await engine.events.create_event(event_payload(title='   '))

        assert exc_info.value.error_code == 'TITLE_REQUIRED'

    @pytest.mark.asyncio
    async def test_event_inherits_cycle_participants(self, engine):
        cycle = CycleFactory(default_participants=['grp-a', 'grp-b'])

        result = await engine.events.create_event(event_payload(cycle_id=cycle.id))

        assert result.data['participants'] == ['grp-a', 'grp-b']

    @pytest.mark.asyncio
    async def test_unknown_cycle_is_rejected(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            await engine.events.create_event(event_payload(cycle_id='missing'))

        assert exc_info.value.error_code == 'CYCLE_NOT_FOUND'

    @pytest.mark.asyncio
    async def test_slow_record_create_times_out_without_leaving_a_record(self, engine, db_session, monkeypatch):
        """
        GIVEN a record write that commits only after the create time box expired
        WHEN the event is created
        THEN the caller gets RECORD_TIMEOUT and the late row is removed again
        """
        real_create = EventRepository.create

        def slow_create(repository, **fields):
            time.sleep(0.3)
            return real_create(repository, **fields)

        engine.events.record_timeout = 0.05
        monkeypatch.setattr(EventRepository, 'create', slow_create)

        result = await engine.events.create_event(event_payload())

        assert result.success is False
        assert result.error_code == 'RECORD_TIMEOUT'

        await asyncio.sleep(0.6)
        assert db_session.query(Event).count() == 0

    @pytest.mark.asyncio
    async def test_record_is_written_through_its_own_session(self, engine, db_session):
        result = await engine.events.create_event(event_payload())

        stored = db_session.get(Event, result.data['id'], populate_existing=True)
        assert stored.title == 'Season Kickoff'


# =============================================================================
# UPDATE
# =============================================================================

@pytest.mark.unit
class TestUpdateEvent:

    @pytest.mark.asyncio
    async def test_moving_start_keeps_duration(self, engine):
        event = EventFactory(start_time=START, end_time=START + timedelta(hours=2))

        result = await engine.events.update_event(event.id, {'start_time': START + timedelta(hours=1)})

        assert result.message == 'Event updated'
        assert result.data['end_time'] == (START + timedelta(hours=3)).isoformat()

    @pytest.mark.asyncio
    async def test_update_reports_channel_failures(self, engine, adapter):
        event = EventFactory(channel_publications=publications_for('c1', 'c2'))
        adapter.fail('update', 'c1')

        result = await engine.events.update_event(event.id, {'title': 'Moved Indoors'})

        assert result.success is True
        assert result.message == 'Event updated; 1 channel failed to update'
        assert result.data['title'] == 'Moved Indoors'

    @pytest.mark.asyncio
    async def test_update_recomputes_reminders(self, engine, db_session):
        """
        GIVEN a published event at T with a stored 60-minute reminder
        WHEN its start moves to T+30 minutes
        THEN the pending reminder fires at T-30 minutes
        """
        event = EventFactory(
            start_time=START,
            channel_publications=publications_for('c1'),
            reminder_settings={'first': {'enabled': True, 'value': 60, 'unit': 'minutes'}},
        )
        EventReminderFactory(event=event, scheduled_time=START - timedelta(minutes=60))

        await engine.events.update_event(event.id, {'start_time': START + timedelta(minutes=30)})

        pending = db_session.query(EventReminder).filter_by(event_id=event.id, sent=False).all()
        assert [r.scheduled_time for r in pending] == [START - timedelta(minutes=30)]

    @pytest.mark.asyncio
    async def test_update_with_publish_now_publishes(self, engine, adapter):
        event = EventFactory()

        result = await engine.events.update_event(
            event.id, {'publish_now': True, 'channels': [{'channel_id': 'c1'}]}
        )

        assert result.message == 'Event updated and published'
        assert result.data['is_published'] is True

    @pytest.mark.asyncio
    async def test_extending_a_finished_event_reopens_it(self, engine, db_session):
        """
        GIVEN a finished event with closed RSVPs
        WHEN its end time is moved past now
        THEN it is live again and accepts RSVP changes
        """
        event = EventFactory(
            start_time=BASE_TIME - timedelta(hours=3),
            channel_publications=publications_for('c1'),
            concluded_at=BASE_TIME - timedelta(hours=1),
        )
        engine.reconciler.close(event.id)

        await engine.events.update_event(event.id, {'end_time': BASE_TIME + timedelta(hours=1)})

        assert db_session.get(Event, event.id, populate_existing=True).concluded_at is None
        assert not engine.reconciler.is_closed(event.id)

    @pytest.mark.asyncio
    async def test_end_before_start_is_rejected(self, engine):
        event = EventFactory(start_time=START)

        with pytest.raises(ValidationError):
            await engine.events.update_event(event.id, {'end_time': START - timedelta(minutes=1)})

    @pytest.mark.asyncio
    async def test_unknown_event_raises_not_found(self, engine):
        with pytest.raises(NotFoundError):
            await engine.events.update_event('missing', {'title': 'x'})


# =============================================================================
# DELETE
# =============================================================================

@pytest.mark.unit
class TestDeleteEvent:

    @pytest.mark.asyncio
    async def test_delete_with_one_channel_failing(self, engine, adapter, db_session):
        """
        GIVEN an event posted in two channels with a pending reminder
        WHEN it is deleted and one channel refuses
        THEN both channels were attempted, the reminder is cancelled and
        the record is gone
        """
        event = EventFactory(channel_publications=publications_for('c1', 'c2'))
        EventReminderFactory(event=event, scheduled_time=START - timedelta(minutes=15))
        event_id = event.id
        adapter.fail('delete', 'c2')

        result = await engine.events.delete_event(event_id)

        assert result.success is True
        assert result.message == 'Event deleted; failed to remove 1 channel message'
        assert sorted(c for c, _ in adapter.delete_attempts) == ['c1', 'c2']
        assert db_session.get(Event, event_id) is None
        assert db_session.query(EventReminder).filter_by(event_id=event_id).count() == 0

    @pytest.mark.asyncio
    async def test_delete_cancels_scheduled_publication(self, engine, db_session):
        event = EventFactory()
        engine.queue.schedule(event.id, BASE_TIME + timedelta(days=1))

        result = await engine.events.delete_event(event.id)

        assert result.message == 'Event deleted'
        assert db_session.query(ScheduledPublicationEntry).count() == 0

    @pytest.mark.asyncio
    async def test_delete_unknown_event_raises(self, engine):
        with pytest.raises(NotFoundError):
            await engine.events.delete_event('missing')


# =============================================================================
# PUBLISH / SCHEDULE
# =============================================================================

@pytest.mark.unit
class TestPublishAndSchedule:

    @pytest.mark.asyncio
    async def test_publish_event_failure_is_a_failed_result(self, engine, adapter):
        event = EventFactory()
        adapter.fail('create', 'c1')

        result = await engine.events.publish_event(event.id, ['c1'])

        assert result.success is False
        assert result.error_code == 'PUBLISH_FAILED'
        assert len(result.errors) == 1

    @pytest.mark.asyncio
    async def test_publishing_a_finished_event_conflicts(self, engine, adapter):
        event = EventFactory(concluded_at=BASE_TIME - timedelta(hours=1))

        with pytest.raises(ConflictError):
            await engine.events.publish_event(event.id, ['c1'])
        assert adapter.created == []

    def test_cancel_scheduled_publication(self, engine):
        event = EventFactory()
        engine.queue.schedule(event.id, BASE_TIME + timedelta(days=1))

        first = engine.events.cancel_scheduled_publication(event.id)
        second = engine.events.cancel_scheduled_publication(event.id)

        assert first.message == 'Scheduled publication cancelled'
        assert second.message == 'No scheduled publication to cancel'


# =============================================================================
# CYCLES
# =============================================================================

@pytest.mark.unit
class TestCycles:

    def test_create_cycle_and_status(self, engine):
        result = engine.events.create_cycle({
            'name': 'Autumn',
            'start_date': BASE_TIME + timedelta(days=10),
            'end_date': BASE_TIME + timedelta(days=100),
        })

        assert result.message == 'Cycle created'
        assert result.data['status'] == 'upcoming'
        assert result.data['cycle_type'] == 'season'

    def test_list_cycles_derives_status_from_clock(self, engine, clock):
        CycleFactory(name='Current')

        assert engine.events.list_cycles()[0]['status'] == 'active'
        clock.advance(days=90)
        assert engine.events.list_cycles()[0]['status'] == 'completed'

    def test_cycle_end_must_follow_start(self, engine):
        with pytest.raises(ValidationError):
            engine.events.create_cycle({
                'name': 'Backwards',
                'start_date': BASE_TIME,
                'end_date': BASE_TIME - timedelta(days=1),
            })

    def test_update_cycle(self, engine):
        cycle = CycleFactory()

        result = engine.events.update_cycle(cycle.id, {'name': 'Renamed'})

        assert result.data['name'] == 'Renamed'

    def test_cycle_with_events_cannot_be_deleted(self, engine):
        cycle = CycleFactory()
        EventFactory(cycle=cycle)

        with pytest.raises(ValidationError) as exc_info:
            engine.events.delete_cycle(cycle.id)

        assert exc_info.value.error_code == 'CYCLE_HAS_EVENTS'

    def test_empty_cycle_is_deleted(self, engine):
        cycle = CycleFactory()

        result = engine.events.delete_cycle(cycle.id)

        assert result.message == 'Cycle deleted'
        with pytest.raises(NotFoundError):
            engine.events.get_cycle(cycle.id)
