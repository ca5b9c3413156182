# eventcast/bot.py

"""
Discord bot process.

Runs the event engine inside the bot's event loop: the Discord channel
adapter, the timer loops, the RSVP update stream and the REST API all
share one loop and one database session.
"""

import asyncio
import logging

import discord
import uvicorn
from discord.ext import commands

from eventcast.api import create_app, attach_engine
from eventcast.channels.discord_adapter import DiscordChannelAdapter, RSVP_EMOJIS
from eventcast.config import Config
from eventcast.engine import build_engine
from eventcast.log_config import configure_logging
from eventcast.models import init_db, get_session
from eventcast.realtime import RSVPUpdateStream
from eventcast.repositories import EventRepository
from eventcast.schemas import RSVPUpdateNotification
from eventcast.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def build_intents():
    intents = discord.Intents.default()
    intents.guilds = True
    intents.messages = True
    intents.reactions = True
    intents.members = True
    return intents


class EventcastBot(commands.Bot):
    """
    Bot subclass that owns the engine lifecycle.

    The engine is assembled in ``setup_hook`` so the REST API can answer
    as soon as the loop runs; channel operations succeed once the bot is
    ready and the adapter is attached.
    """

    def __init__(self, config=Config, *args, **kwargs):
        kwargs.setdefault('command_prefix', config.COMMAND_PREFIX)
        kwargs.setdefault('intents', build_intents())
        super().__init__(*args, **kwargs)
        self.config = config
        self.adapter = DiscordChannelAdapter()
        self.engine = None
        self.session = None
        self.api_app = create_app()
        self.api_server = None
        self.api_task = None
        self.rsvp_stream = None
        self._started = False

    async def setup_hook(self):
        """Called when the bot is starting up"""
        logger.info("Setting up event engine...")
        init_db(self.config.DATABASE_URL, echo=self.config.DATABASE_ECHO)
        self.session = get_session()

        migrated = EventRepository(self.session).migrate_legacy_publications()
        if migrated:
            logger.info(f"Normalized {migrated} legacy channel publication record(s)")

        self.engine = build_engine(self.session, self.adapter, self.config)
        attach_engine(self.api_app, self.engine)
        self.api_task = self.loop.create_task(self.start_rest_api())
        logger.info("Bot setup completed")

    async def on_ready(self):
        logger.info(f"Logged in as {self.user.name} (ID: {self.user.id})")
        self.adapter.attach(self)
        if self._started:
            return
        self._started = True

        self.engine.start()

        if self.config.RSVP_STREAM_URL:
            self.rsvp_stream = RSVPUpdateStream(
                self.config.RSVP_STREAM_URL,
                self.engine.reconciler,
                api_key=self.config.RSVP_STREAM_API_KEY,
            )
            await self.rsvp_stream.start()
        else:
            logger.info("RSVP_STREAM_URL not set; relying on reactions and periodic refresh")

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        await self._forward_reaction(payload)

    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent):
        await self._forward_reaction(payload)

    async def _forward_reaction(self, payload):
        """Turn an RSVP reaction on a tracked message into a push update."""
        if self.engine is None or str(payload.emoji) not in RSVP_EMOJIS:
            return
        if self.user is not None and payload.user_id == self.user.id:
            return
        try:
            attendance = await self.adapter.fetch_attendance(str(payload.channel_id), str(payload.message_id))
        except Exception as e:
            logger.warning(f"Could not read RSVP reactions for message {payload.message_id}: {e}")
            return
        notification = RSVPUpdateNotification(
            message_id=str(payload.message_id),
            attendance=attendance,
            timestamp=utcnow(),
        )
        await self.engine.reconciler.apply_update(notification)

    async def start_rest_api(self):
        """Serve the REST API with uvicorn on the bot's loop."""
        config = uvicorn.Config(
            self.api_app,
            host=self.config.API_HOST,
            port=self.config.API_PORT,
            log_level="info",
            lifespan="off",
        )
        self.api_server = uvicorn.Server(config)
        logger.info(f"Starting REST API on {self.config.API_HOST}:{self.config.API_PORT}")
        try:
            await self.api_server.serve()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"REST API server stopped with error: {e}", exc_info=True)

    async def close(self):
        logger.info("Shutting down event engine...")
        if self.rsvp_stream is not None:
            await self.rsvp_stream.stop()
        if self.engine is not None:
            await self.engine.stop()
        if self.api_server is not None:
            self.api_server.should_exit = True
        if self.api_task is not None:
            try:
                await asyncio.wait_for(self.api_task, timeout=5)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self.api_task.cancel()
        if self.session is not None:
            self.session.close()
        await super().close()


def main():
    configure_logging(Config.LOG_DIR)
    token = Config.DISCORD_BOT_TOKEN
    if not token:
        raise SystemExit("DISCORD_BOT_TOKEN is not set")

    bot = EventcastBot()
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Bot shutdown via KeyboardInterrupt")


if __name__ == "__main__":
    main()
