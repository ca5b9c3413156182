# eventcast/models/events.py

"""
Event and Cycle models.

An Event is the unit that gets announced to channels. Its
``channel_publications`` column holds the channel-id to message-id map
that the publication orchestrator maintains. A Cycle groups events into a
date window and supplies default participant groups.
"""

import logging
import uuid
from datetime import timedelta

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship, validates

from eventcast.models.core import Base
from eventcast.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

LEGACY_CHANNEL_KEY = 'legacy'
DEFAULT_EVENT_DURATION = timedelta(hours=1)


def _new_id():
    return str(uuid.uuid4())


def normalize_channel_publications(raw):
    """
    Convert any historical shape of the channel-publication field into the
    structured map ``{channel_id: {message_id, published_at, guild_id}}``.

    Accepted inputs:
        None / '' / []                 -> {}
        'message-id'                   -> {'legacy': {'message_id': ...}}
        [{'channelId', 'messageId'}]   -> keyed by channel id
        {channel_id: 'message-id'}     -> values expanded
        {channel_id: {...}}            -> copied with snake_case keys
    """
    if not raw:
        return {}

    if isinstance(raw, str):
        return {LEGACY_CHANNEL_KEY: {'message_id': raw, 'published_at': None, 'guild_id': None}}

    if isinstance(raw, list):
        result = {}
        for item in raw:
            if not isinstance(item, dict):
                continue
            channel_id = item.get('channel_id') or item.get('channelId')
            message_id = item.get('message_id') or item.get('messageId')
            if not channel_id or not message_id:
                logger.warning(f"Skipping malformed publication entry: {item}")
                continue
            result[str(channel_id)] = {
                'message_id': str(message_id),
                'published_at': item.get('published_at') or item.get('publishedAt'),
                'guild_id': _str_or_none(item.get('guild_id') or item.get('guildId')),
            }
        return result

    if isinstance(raw, dict):
        result = {}
        for channel_id, info in raw.items():
            if isinstance(info, str):
                result[str(channel_id)] = {'message_id': info, 'published_at': None, 'guild_id': None}
            elif isinstance(info, dict):
                message_id = info.get('message_id') or info.get('messageId')
                if not message_id:
                    continue
                result[str(channel_id)] = {
                    'message_id': str(message_id),
                    'published_at': info.get('published_at') or info.get('publishedAt'),
                    'guild_id': _str_or_none(info.get('guild_id') or info.get('guildId')),
                }
        return result

    raise TypeError(f"Unsupported channel publication shape: {type(raw).__name__}")


def _str_or_none(value):
    return str(value) if value is not None else None


class Cycle(Base):
    __tablename__ = 'cycles'

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    cycle_type = Column(String(50), nullable=False, default='season')
    default_participants = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    events = relationship('Event', back_populates='cycle')

    def status_at(self, now):
        """Status derived purely from ``now`` against the cycle window."""
        if now < self.start_date:
            return 'upcoming'
        if now <= self.end_date:
            return 'active'
        return 'completed'

    def to_dict(self, now=None):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat(),
            'cycle_type': self.cycle_type,
            'default_participants': list(self.default_participants or []),
            'status': self.status_at(now or utcnow()),
        }

    def __repr__(self):
        return f"<Cycle {self.id} {self.name}>"


class Event(Base):
    __tablename__ = 'events'

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    cycle_id = Column(String(36), ForeignKey('cycles.id'), nullable=True, index=True)
    participants = Column(JSON, nullable=False, default=list)
    channel_publications = Column(JSON, nullable=False, default=dict)
    reminder_settings = Column(JSON, nullable=True)
    header_image_url = Column(String(1024))
    image_urls = Column(JSON, nullable=False, default=list)
    timezone = Column(String(64))
    concluded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    cycle = relationship('Cycle', back_populates='events')
    scheduled_entry = relationship(
        'ScheduledPublicationEntry', back_populates='event', uselist=False,
        cascade='all, delete-orphan'
    )
    reminders = relationship('EventReminder', back_populates='event', cascade='all, delete-orphan')

    @validates('channel_publications')
    def _normalize_publications(self, key, value):
        return normalize_channel_publications(value)

    def publications(self):
        """Structured channel map, tolerant of rows not yet migrated."""
        return normalize_channel_publications(self.channel_publications)

    @property
    def is_published(self):
        return bool(self.publications())

    @property
    def scheduled_publication(self):
        """Due time of the pending queue entry; only present before first publish."""
        if self.is_published:
            return None
        entry = self.scheduled_entry
        if entry is None or entry.sent:
            return None
        return entry.scheduled_time

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'cycle_id': self.cycle_id,
            'participants': list(self.participants or []),
            'channel_publications': self.publications(),
            'reminder_settings': self.reminder_settings,
            'header_image_url': self.header_image_url,
            'image_urls': list(self.image_urls or []),
            'timezone': self.timezone,
            'is_published': self.is_published,
            'concluded_at': self.concluded_at.isoformat() if self.concluded_at else None,
            'scheduled_publication': (
                self.scheduled_publication.isoformat() if self.scheduled_publication else None
            ),
        }

    def __repr__(self):
        return f"<Event {self.id} {self.title!r}>"
