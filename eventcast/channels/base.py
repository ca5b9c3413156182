# eventcast/channels/base.py

"""
Channel adapter contract.

A channel adapter owns the primitive operations against one kind of
external destination: post, edit and delete an event announcement, send a
plain message, and read the RSVP state attached to a posted message.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from eventcast.schemas import AttendanceRecord
from eventcast.utils.datetime_utils import describe_time_until
from eventcast.utils.timeouts import OperationTimeoutError


class ChannelAdapterError(Exception):
    """Raised when a channel operation fails."""

    def __init__(self, message, channel_id=None):
        self.channel_id = channel_id
        super().__init__(message)


class ChannelTimeoutError(ChannelAdapterError, OperationTimeoutError):
    """A channel call exceeded its time box."""

    def __init__(self, operation, timeout):
        OperationTimeoutError.__init__(self, operation, timeout)
        self.channel_id = None


class MessageNotFoundError(ChannelAdapterError):
    """The channel reports the message as already gone."""


@dataclass
class ChannelError:
    channel_id: str
    operation: str
    message: str

    def to_dict(self):
        return {'channel_id': self.channel_id, 'operation': self.operation, 'message': self.message}


@dataclass(frozen=True)
class ChannelTarget:
    channel_id: str
    guild_id: Optional[str] = None

    @property
    def key(self):
        """Targets sharing a (guild, channel) pair are the same destination."""
        return f"{self.guild_id or ''}:{self.channel_id}"


@dataclass
class EventMessage:
    """Channel-agnostic rendering input for an event announcement."""
    event_id: str
    title: str
    start_time: datetime
    end_time: Optional[datetime] = None
    description: Optional[str] = None
    timezone: Optional[str] = None
    image_url: Optional[str] = None
    image_urls: List[str] = field(default_factory=list)
    countdown: Optional[str] = None
    concluded: bool = False

    @classmethod
    def from_event(cls, event, now=None):
        concluded = event.concluded_at is not None or (
            now is not None and event.end_time is not None and now >= event.end_time
        )
        countdown = None
        if now is not None:
            countdown = countdown_text(event.start_time, event.end_time, now)
        return cls(
            event_id=event.id,
            title=event.title,
            start_time=event.start_time,
            end_time=event.end_time,
            description=event.description,
            timezone=event.timezone,
            image_url=event.header_image_url,
            image_urls=list(event.image_urls or []),
            countdown=countdown,
            concluded=concluded,
        )


def countdown_text(start_time, end_time, now):
    """Countdown line shown on an announcement at ``now``."""
    if end_time is not None and now >= end_time:
        return 'Event Finished'
    if now >= start_time:
        return 'Happening Now'
    return f"Starts {describe_time_until(start_time, now)}"


class ChannelAdapter(ABC):

    @abstractmethod
    async def create_message(self, target: ChannelTarget, payload: EventMessage) -> str:
        """Post the announcement and return the new message id."""

    @abstractmethod
    async def update_message(self, channel_id: str, message_id: str, payload: EventMessage) -> None:
        """Replace the content of a posted announcement."""

    @abstractmethod
    async def delete_message(self, channel_id: str, message_id: str) -> None:
        """Delete a posted message. Raises MessageNotFoundError if it is already gone."""

    @abstractmethod
    async def fetch_attendance(self, channel_id: str, message_id: str) -> List[AttendanceRecord]:
        """Read the RSVP state currently attached to a message."""

    @abstractmethod
    async def send_message(self, channel_id: str, content: str) -> str:
        """Send a plain text message and return its id."""

    def format_mention(self, person_id: str, display_name: str) -> str:
        return f"@{display_name or person_id}"
