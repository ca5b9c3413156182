# eventcast/realtime/rsvp_stream.py

"""
RSVP Update Stream

Socket.IO client that receives push notifications carrying the full RSVP
state of one announcement message and hands them to the attendance
reconciler. Delivery is at-least-once; duplicate suppression is the
reconciler's job.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

import socketio
from pydantic import ValidationError as PydanticValidationError

from eventcast.schemas import RSVPUpdateNotification
from eventcast.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class RSVPUpdateStream:
    """
    Maintains the Socket.IO connection and forwards ``rsvp_update`` events.

    A background connection manager reconnects when the link drops, on top
    of the client's own reconnection.
    """

    def __init__(self, url: str, reconciler, api_key: Optional[str] = None, check_interval: int = 30):
        self.url = url
        self.api_key = api_key
        self.reconciler = reconciler
        self.check_interval = check_interval

        self.sio = socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=0,  # Infinite attempts
            reconnection_delay=1,
            reconnection_delay_max=30,
            logger=False
        )

        self.connected = False
        self.connection_task: Optional[asyncio.Task] = None

        # Stats for logging
        self.events_received = 0
        self.events_applied = 0
        self.events_rejected = 0
        self.connection_attempts = 0
        self.last_event_time: Optional[datetime] = None

        self._setup_handlers()

    def _setup_handlers(self):
        """Set up Socket.IO event handlers."""

        @self.sio.on('connect')
        async def on_connect():
            self.connected = True
            self.connection_attempts += 1
            logger.info(f"🔗 Connected to RSVP stream (attempt #{self.connection_attempts})")

        @self.sio.on('disconnect')
        async def on_disconnect():
            self.connected = False
            logger.warning("❌ Disconnected from RSVP stream")

        @self.sio.on('connect_error')
        async def on_connect_error(data):
            logger.error(f"🔗 RSVP stream connection error: {data}")

        @self.sio.on('rsvp_update')
        async def on_rsvp_update(data):
            await self.handle_update(data)

    async def handle_update(self, data) -> bool:
        """Validate a raw payload and apply it. Returns True if the partition changed."""
        self.events_received += 1
        self.last_event_time = utcnow()
        try:
            notification = RSVPUpdateNotification.model_validate(data)
        except PydanticValidationError as e:
            self.events_rejected += 1
            logger.warning(f"⚠️ Rejected malformed rsvp_update payload: {e.error_count()} error(s)")
            return False

        try:
            applied = await self.reconciler.apply_update(notification)
        except Exception as e:
            logger.error(f"❌ Error applying RSVP update for message {notification.message_id}: {e}", exc_info=True)
            return False

        if applied:
            self.events_applied += 1
        return applied

    async def connect(self) -> bool:
        if self.connected:
            return True
        try:
            logger.info(f"🔌 Connecting to RSVP stream at {self.url}")
            headers = {'User-Agent': 'eventcast-rsvp-stream/1.0'}
            auth = None
            if self.api_key:
                headers['X-API-Key'] = self.api_key
                auth = {'api_key': self.api_key}
            await self.sio.connect(self.url, headers=headers, transports=['websocket'], auth=auth)
            return True
        except Exception as e:
            logger.error(f"❌ Failed to connect to RSVP stream: {e}")
            return False

    async def disconnect(self):
        if self.connected:
            logger.info("🔌 Disconnecting from RSVP stream")
            await self.sio.disconnect()
            self.connected = False

    async def start(self):
        """Start the connection manager as a background task."""
        if self.connection_task:
            logger.debug("RSVP stream connection manager already running")
            return
        self.connection_task = asyncio.create_task(self._connection_manager_loop())
        logger.info("🚀 Started RSVP stream connection manager")

    async def _connection_manager_loop(self):
        while True:
            try:
                if not self.connected:
                    await self.connect()
                await asyncio.sleep(self.check_interval)
            except asyncio.CancelledError:
                logger.info("🛑 RSVP stream connection manager cancelled")
                break
            except Exception as e:
                logger.error(f"❌ Error in RSVP stream connection manager: {e}")
                await asyncio.sleep(10)

    def get_stats(self) -> Dict:
        return {
            'connected': self.connected,
            'connection_attempts': self.connection_attempts,
            'events_received': self.events_received,
            'events_applied': self.events_applied,
            'events_rejected': self.events_rejected,
            'last_event_time': self.last_event_time.isoformat() if self.last_event_time else None,
        }

    async def stop(self):
        if self.connection_task:
            self.connection_task.cancel()
            try:
                await self.connection_task
            except asyncio.CancelledError:
                pass
            self.connection_task = None
        await self.disconnect()
        logger.info("🛑 RSVP stream stopped")
