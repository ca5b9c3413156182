from .core import Base, SessionLocal, init_db, get_engine, get_session, session_scope
from .events import Event, Cycle, normalize_channel_publications, LEGACY_CHANNEL_KEY, DEFAULT_EVENT_DURATION
from .scheduling import ScheduledPublicationEntry, EventReminder

__all__ = [
    'Base', 'SessionLocal', 'init_db', 'get_engine', 'get_session', 'session_scope',
    'Event', 'Cycle', 'normalize_channel_publications', 'LEGACY_CHANNEL_KEY', 'DEFAULT_EVENT_DURATION',
    'ScheduledPublicationEntry', 'EventReminder',
]
