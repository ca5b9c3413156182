"""
PublicationOrchestrator unit tests.

These tests verify the orchestrator's core behaviors:
- Concurrent fan-out with per-channel failure isolation
- Reuse of channels that already hold the announcement
- Durable write-back of the channel map
- Update and delete propagation, including already-deleted messages
- Fallback to the local message-id cache

The channel adapter is an in-memory fake; the database is real (SQLite).
"""
import pytest
from datetime import timedelta

from eventcast.channels.base import ChannelTarget
from eventcast.models import Event, ScheduledPublicationEntry
from eventcast.services.base_service import NotFoundError
from eventcast.services.image_store import ImageFile, ImageUploadRequest
from eventcast.services.publication_orchestrator import (
    PublicationOrchestrator,
    coerce_targets,
    dedupe_targets,
)
from eventcast.services.reminder_scheduler import ReminderScheduler
from tests.factories import (
    BASE_TIME,
    EventFactory,
    ScheduledPublicationEntryFactory,
    publications_for,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def reminder_scheduler(db_session, adapter, clock):
    return ReminderScheduler(db_session, adapter, clock=clock)


@pytest.fixture
def orchestrator(db_session, adapter, reminder_scheduler, image_store, message_cache, roster, clock):
    return PublicationOrchestrator(
        db_session,
        adapter,
        reminder_scheduler=reminder_scheduler,
        image_store=image_store,
        message_cache=message_cache,
        roster=roster,
        channel_timeout=0.2,
        image_timeout=0.5,
        clock=clock,
    )


def stored_publications(db_session, event_id):
    return db_session.get(Event, event_id, populate_existing=True).publications()


# =============================================================================
# TARGET HELPERS
# =============================================================================

@pytest.mark.unit
class TestTargetHelpers:

    def test_coerce_targets_accepts_mixed_shapes(self):
        targets = coerce_targets([
            ChannelTarget('c1', 'g1'),
            {'channel_id': 2, 'guild_id': 9},
            'c3',
        ])

        assert targets == [ChannelTarget('c1', 'g1'), ChannelTarget('2', '9'), ChannelTarget('c3')]

    def test_dedupe_targets_keeps_first_per_guild_channel_pair(self):
        targets = dedupe_targets([
            ChannelTarget('c1', 'g1'),
            ChannelTarget('c1', 'g1'),
            ChannelTarget('c1', 'g2'),
        ])

        assert targets == [ChannelTarget('c1', 'g1'), ChannelTarget('c1', 'g2')]


# =============================================================================
# PUBLISH TESTS
# =============================================================================

@pytest.mark.unit
class TestPublish:

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_successful_channels(self, orchestrator, adapter, db_session):
        """
        GIVEN three target channels where one rejects the post
        WHEN publishing the event
        THEN the other two hold the announcement and one error is reported
        """
        event = EventFactory()
        adapter.fail('create', 'c2')

        result = await orchestrator.publish(event, ['c1', 'c2', 'c3'])

        assert result.success is True
        assert sorted(result.published) == ['c1', 'c3']
        assert [e.channel_id for e in result.errors] == ['c2']
        assert result.errors[0].operation == 'create'
        assert set(stored_publications(db_session, event.id)) == {'c1', 'c3'}

    @pytest.mark.asyncio
    async def test_channels_already_holding_the_event_are_reused(self, orchestrator, adapter, db_session):
        """
        GIVEN an event already posted in c1
        WHEN publishing to c1 and c2
        THEN only c2 gets a new message and c1 keeps its message id
        """
        event = EventFactory(channel_publications=publications_for('c1'))

        result = await orchestrator.publish(event, ['c1', 'c2'])

        assert [c for c, _, _ in adapter.created] == ['c2']
        assert result.reused == ['c1']
        stored = stored_publications(db_session, event.id)
        assert stored['c1']['message_id'] == 'm-c1'
        assert 'c2' in stored

    @pytest.mark.asyncio
    async def test_no_channels_is_a_validation_failure_without_side_effects(self, orchestrator, adapter, db_session):
        event = EventFactory()

        result = await orchestrator.publish(event, [])

        assert result.success is False
        assert result.validation_error
        assert adapter.created == []
        assert stored_publications(db_session, event.id) == {}

    @pytest.mark.asyncio
    async def test_targets_default_to_participant_group_channels(self, orchestrator, adapter):
        """
        GIVEN an event for participant groups with channel integrations
        WHEN publishing without explicit channels
        THEN each group's channel receives the announcement
        """
        event = EventFactory(participants=['grp-a', 'grp-b', 'unknown'])

        result = await orchestrator.publish(event)

        assert result.success is True
        assert sorted(c for c, _, _ in adapter.created) == ['c-a', 'c-b']

    @pytest.mark.asyncio
    async def test_duplicate_targets_are_posted_once(self, orchestrator, adapter):
        event = EventFactory()

        await orchestrator.publish(event, [
            {'channel_id': 'c1', 'guild_id': 'g1'},
            {'channel_id': 'c1', 'guild_id': 'g1'},
        ])

        assert len(adapter.created) == 1

    @pytest.mark.asyncio
    async def test_hanging_channel_times_out_as_a_channel_error(self, orchestrator, adapter):
        event = EventFactory()
        adapter.hanging.add('slow')

        result = await orchestrator.publish(event, ['fast', 'slow'])

        assert result.success is True
        assert result.published == ['fast']
        assert result.errors[0].channel_id == 'slow'
        assert 'timed out' in result.errors[0].message

    @pytest.mark.asyncio
    async def test_all_channels_failing_reports_failure(self, orchestrator, adapter, db_session):
        event = EventFactory()
        adapter.fail('create', 'c1')

        result = await orchestrator.publish(event, ['c1'])

        assert result.success is False
        assert result.validation_error is None
        assert len(result.errors) == 1
        assert stored_publications(db_session, event.id) == {}

    @pytest.mark.asyncio
    async def test_publish_closes_out_pending_scheduled_entry(self, orchestrator, db_session):
        """
        GIVEN an event with a pending scheduled publication
        WHEN it is published directly
        THEN the pending entry is marked sent and will not be reprocessed
        """
        entry = ScheduledPublicationEntryFactory(scheduled_time=BASE_TIME + timedelta(hours=3))

        await orchestrator.publish(entry.event_id, ['c1'])

        entry = db_session.get(ScheduledPublicationEntry, entry.id, populate_existing=True)
        assert entry.sent is True
        assert entry.sent_at == BASE_TIME

    @pytest.mark.asyncio
    async def test_publish_schedules_and_stores_reminders(self, orchestrator, db_session):
        event = EventFactory(start_time=BASE_TIME + timedelta(days=1))

        result = await orchestrator.publish(
            event, ['c1'],
            reminder_config={'first': {'enabled': True, 'value': 30, 'unit': 'minutes'}},
        )

        assert result.reminders_scheduled == 1
        stored = db_session.get(Event, event.id, populate_existing=True)
        assert stored.reminder_settings['first']['value'] == 30
        assert stored.reminders[0].scheduled_time == BASE_TIME + timedelta(days=1) - timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_new_message_ids_are_cached_locally(self, orchestrator, adapter, message_cache):
        event = EventFactory()

        await orchestrator.publish(event, ['c1'])

        message_id = adapter.created[0][2]
        assert message_cache.lookup(event.id) == {'c1': message_id}

    @pytest.mark.asyncio
    async def test_images_are_stored_before_posting(self, orchestrator, db_session):
        event = EventFactory()
        images = ImageUploadRequest(header=ImageFile('poster.png', b'png-bytes', 'image/png'))

        result = await orchestrator.publish(event, ['c1'], images=images)

        assert result.errors == []
        stored = db_session.get(Event, event.id, populate_existing=True)
        assert stored.header_image_url == f'/images/{event.id}/header-poster.png'

    @pytest.mark.asyncio
    async def test_missing_event_raises_not_found(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.publish('does-not-exist', ['c1'])


# =============================================================================
# UPDATE TESTS
# =============================================================================

@pytest.mark.unit
class TestUpdate:

    @pytest.mark.asyncio
    async def test_update_pushes_to_every_channel_and_reports_failures(self, orchestrator, adapter, db_session):
        """
        GIVEN an event posted in two channels, one of which rejects edits
        WHEN the title changes
        THEN the record is updated, one channel is edited and one error returned
        """
        event = EventFactory(channel_publications=publications_for('c1', 'c2'))
        adapter.fail('update', 'c2')

        result = await orchestrator.update(event.id, {'title': 'Renamed'})

        assert result.success is True
        assert result.updated == ['c1']
        assert [e.channel_id for e in result.errors] == ['c2']
        assert adapter.updated == [('c1', 'm-c1')]
        assert db_session.get(Event, event.id, populate_existing=True).title == 'Renamed'

    @pytest.mark.asyncio
    async def test_update_unpublished_event_touches_no_channel(self, orchestrator, adapter):
        event = EventFactory()

        result = await orchestrator.update(event.id, {'title': 'Draft'})

        assert result.success is True
        assert result.publication is None
        assert adapter.updated == []

    @pytest.mark.asyncio
    async def test_update_with_publish_now_publishes(self, orchestrator, adapter):
        event = EventFactory()

        result = await orchestrator.update(event.id, {}, publish_now=True, channels=['c1'])

        assert result.publication is not None
        assert result.publication.success is True
        assert [c for c, _, _ in adapter.created] == ['c1']

    @pytest.mark.asyncio
    async def test_update_falls_back_to_cached_message_ids(self, orchestrator, adapter, message_cache, db_session):
        """
        GIVEN an event whose stored map is empty but the local cache knows a message
        WHEN it is updated
        THEN the cached message is edited and promoted into the stored map
        """
        event = EventFactory()
        message_cache.remember(event.id, 'c5', 'm5')

        await orchestrator.update(event.id, {'title': 'Recovered'})

        assert adapter.updated == [('c5', 'm5')]
        assert stored_publications(db_session, event.id)['c5']['message_id'] == 'm5'


# =============================================================================
# DELETE TESTS
# =============================================================================

@pytest.mark.unit
class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_attempts_every_channel_and_keeps_failed_ones(self, orchestrator, adapter, db_session):
        event = EventFactory(channel_publications=publications_for('c1', 'c2'))
        adapter.fail('delete', 'c2')

        result = await orchestrator.delete(event.id)

        assert sorted(adapter.delete_attempts) == [('c1', 'm-c1'), ('c2', 'm-c2')]
        assert result.deleted == ['c1']
        assert [e.channel_id for e in result.errors] == ['c2']
        assert set(stored_publications(db_session, event.id)) == {'c2'}

    @pytest.mark.asyncio
    async def test_already_deleted_message_counts_as_deleted(self, orchestrator, adapter, db_session):
        event = EventFactory(channel_publications=publications_for('c1'))
        adapter.gone.add('m-c1')

        result = await orchestrator.delete(event.id)

        assert result.success is True
        assert result.deleted == ['c1']
        assert stored_publications(db_session, event.id) == {}

    @pytest.mark.asyncio
    async def test_legacy_publication_is_reported_not_deleted(self, orchestrator, adapter):
        event = EventFactory(channel_publications='legacy-message-id')

        result = await orchestrator.delete(event.id)

        assert adapter.delete_attempts == []
        assert [e.channel_id for e in result.errors] == ['legacy']

    @pytest.mark.asyncio
    async def test_successful_delete_clears_cache_entry(self, orchestrator, message_cache):
        event = EventFactory(channel_publications=publications_for('c1'))
        message_cache.remember(event.id, 'c1', 'm-c1')

        await orchestrator.delete(event.id)

        assert message_cache.lookup(event.id) is None
