"""
Test helpers: an in-memory channel adapter and a controllable clock.
"""
import asyncio
import itertools
from datetime import timedelta

from eventcast.channels.base import ChannelAdapter, ChannelAdapterError, MessageNotFoundError
from eventcast.schemas import AttendanceRecord


def record(person_id, display_name, status):
    return AttendanceRecord(person_id=person_id, display_name=display_name, status=status)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now):
        self.current = now

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class FakeChannelAdapter(ChannelAdapter):
    """
    Records every channel call and lets a test fail, delay or hang
    individual (operation, channel) pairs.
    """

    def __init__(self):
        self.created = []          # (channel_id, event_id, message_id)
        self.updated = []          # (channel_id, message_id)
        self.delete_attempts = []  # (channel_id, message_id)
        self.sent = []             # (channel_id, content)
        self.attendance = {}       # message_id -> [AttendanceRecord]
        self.failures = {}
        self.hanging = set()
        self.gone = set()
        self.delay = 0
        self._ids = itertools.count(1)

    def fail(self, operation, channel_id, error=None):
        self.failures[(operation, channel_id)] = error or ChannelAdapterError(
            f'{operation} rejected by channel {channel_id}', channel_id=channel_id
        )

    async def _enter(self, operation, channel_id):
        if channel_id in self.hanging:
            await asyncio.sleep(3600)
        if self.delay:
            await asyncio.sleep(self.delay)
        error = self.failures.get((operation, channel_id))
        if error is not None:
            raise error

    async def create_message(self, target, payload):
        await self._enter('create', target.channel_id)
        message_id = f'msg-{next(self._ids)}'
        self.created.append((target.channel_id, payload.event_id, message_id))
        return message_id

    async def update_message(self, channel_id, message_id, payload):
        await self._enter('update', channel_id)
        self.updated.append((channel_id, message_id))

    async def delete_message(self, channel_id, message_id):
        self.delete_attempts.append((channel_id, message_id))
        await self._enter('delete', channel_id)
        if message_id in self.gone:
            raise MessageNotFoundError(f'Message {message_id} not found', channel_id=channel_id)

    async def fetch_attendance(self, channel_id, message_id):
        await self._enter('fetch', channel_id)
        return list(self.attendance.get(message_id, []))

    async def send_message(self, channel_id, content):
        await self._enter('send', channel_id)
        self.sent.append((channel_id, content))
        return f'sent-{next(self._ids)}'
