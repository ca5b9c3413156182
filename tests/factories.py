"""
Test factories for creating consistent test data.
"""
import factory
from factory.alchemy import SQLAlchemyModelFactory
from faker import Faker
from datetime import datetime, timedelta
from sqlalchemy.orm import scoped_session, sessionmaker

from eventcast.models import Cycle, Event, EventReminder, ScheduledPublicationEntry

fake = Faker()

# Frozen "now" shared by the clock fixture and every factory default
BASE_TIME = datetime(2025, 6, 1, 12, 0, 0)

TestSession = scoped_session(sessionmaker())


def publications_for(*channel_ids, guild_id='g1'):
    """Stored channel map for an event already posted to ``channel_ids``."""
    return {
        channel_id: {'message_id': f'm-{channel_id}', 'published_at': None, 'guild_id': guild_id}
        for channel_id in channel_ids
    }


class BaseFactory(SQLAlchemyModelFactory):
    class Meta:
        abstract = True
        sqlalchemy_session = TestSession
        sqlalchemy_session_persistence = 'commit'


class CycleFactory(BaseFactory):
    class Meta:
        model = Cycle

    name = factory.LazyFunction(lambda: f'{fake.word().title()} Season')
    description = factory.Faker('text', max_nb_chars=120)
    start_date = factory.LazyFunction(lambda: BASE_TIME - timedelta(days=30))
    end_date = factory.LazyFunction(lambda: BASE_TIME + timedelta(days=60))
    cycle_type = 'season'
    default_participants = factory.LazyFunction(list)


class EventFactory(BaseFactory):
    class Meta:
        model = Event

    title = factory.Faker('sentence', nb_words=3)
    description = factory.Faker('text', max_nb_chars=200)
    start_time = factory.LazyFunction(lambda: BASE_TIME + timedelta(days=7))
    end_time = factory.LazyAttribute(lambda obj: obj.start_time + timedelta(hours=2))
    participants = factory.LazyFunction(list)
    channel_publications = factory.LazyFunction(dict)
    image_urls = factory.LazyFunction(list)
    timezone = 'America/New_York'


class ScheduledPublicationEntryFactory(BaseFactory):
    class Meta:
        model = ScheduledPublicationEntry

    event = factory.SubFactory(EventFactory)
    scheduled_time = factory.LazyFunction(lambda: BASE_TIME - timedelta(seconds=5))
    sent = False


class EventReminderFactory(BaseFactory):
    class Meta:
        model = EventReminder

    event = factory.SubFactory(EventFactory)
    reminder_type = 'first'
    scheduled_time = factory.LazyFunction(lambda: BASE_TIME - timedelta(minutes=1))
    sent = False
