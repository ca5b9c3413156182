from .base import BaseRepository
from .event_repository import EventRepository, CycleRepository
from .scheduling_repository import ScheduledPublicationRepository, ReminderRepository

__all__ = [
    'BaseRepository',
    'EventRepository',
    'CycleRepository',
    'ScheduledPublicationRepository',
    'ReminderRepository',
]
