"""
Pytest configuration and shared fixtures for all tests.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from eventcast.channels.message_cache import MessageIdCache
from eventcast.config import TestingConfig
from eventcast.engine import build_engine
from eventcast.models import Base
from eventcast.services.image_store import LocalImageStore
from eventcast.services.roster import StaticRosterProvider
from tests.factories import TestSession, BASE_TIME
from tests.helpers import FakeChannelAdapter, FrozenClock


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Session shared by the code under test and the factories."""
    TestSession.remove()
    TestSession.configure(bind=db_engine)
    session = TestSession()
    yield session
    TestSession.remove()


@pytest.fixture
def clock():
    return FrozenClock(BASE_TIME)


@pytest.fixture
def adapter():
    return FakeChannelAdapter()


@pytest.fixture
def roster():
    """Two participant groups, each with its own announcement channel."""
    return StaticRosterProvider({
        'grp-a': {
            'guild_id': 'g1',
            'channel_id': 'c-a',
            'members': [
                {'person_id': 'u1', 'display_name': 'Alice'},
                {'person_id': 'u2', 'display_name': 'Bob'},
                {'person_id': 'u3', 'display_name': 'Carol'},
            ],
        },
        'grp-b': {
            'guild_id': 'g1',
            'channel_id': 'c-b',
            'members': [
                {'person_id': 'u4', 'display_name': 'Dave'},
            ],
        },
    })


@pytest.fixture
def image_store(tmp_path):
    return LocalImageStore(str(tmp_path / 'images'))


@pytest.fixture
def message_cache(tmp_path):
    return MessageIdCache(str(tmp_path / 'message_ids.json'))


@pytest.fixture
def engine(db_session, adapter, roster, image_store, message_cache, clock):
    """Fully wired engine around the fake adapter; loops are not started."""
    return build_engine(
        db_session,
        adapter,
        TestingConfig,
        roster=roster,
        image_store=image_store,
        message_cache=message_cache,
        clock=clock,
    )
