# eventcast/channels/discord_adapter.py

"""
Discord implementation of the channel adapter.

Announcements are posted as embeds with the three RSVP reactions attached;
attendance is read back from those reactions.
"""

import logging
from typing import List, Optional

import discord
import pytz
from discord.ext import commands

from eventcast.channels.base import (
    ChannelAdapter,
    ChannelAdapterError,
    ChannelTarget,
    EventMessage,
    MessageNotFoundError,
)
from eventcast.schemas import AttendanceRecord
from eventcast.utils.datetime_utils import get_timezone

logger = logging.getLogger(__name__)

RSVP_EMOJIS = {
    '👍': 'accepted',
    '👎': 'declined',
    '🤷': 'tentative',
}

EVENT_EMBED_COLOR = 0x3498DB


def create_event_embed(payload: EventMessage) -> discord.Embed:
    """Create a Discord embed for an event announcement."""
    embed = discord.Embed(
        title=f"📅 {payload.title}",
        description=payload.description or "",
        color=EVENT_EMBED_COLOR
    )

    tz = get_timezone(payload.timezone)
    start_local = _localize(payload.start_time, tz)
    embed.add_field(name="📅 Date", value=start_local.strftime("%A, %B %d, %Y"), inline=True)
    embed.add_field(name="🕐 Time", value=start_local.strftime("%I:%M %p %Z"), inline=True)

    if payload.end_time:
        end_local = _localize(payload.end_time, tz)
        embed.add_field(name="🏁 Until", value=end_local.strftime("%I:%M %p %Z"), inline=True)

    if payload.countdown:
        embed.add_field(name="⏳ Countdown", value=_countdown_value(payload), inline=False)

    if payload.image_url:
        embed.set_image(url=payload.image_url)
    if payload.image_urls:
        embed.add_field(
            name="🖼️ Images",
            value="\n".join(payload.image_urls),
            inline=False
        )

    if payload.concluded:
        embed.set_footer(text="This event has finished; RSVPs are closed")
    else:
        embed.set_footer(text="React 👍 to attend, 👎 if you can't, 🤷 if unsure")
    return embed


def _countdown_value(payload):
    if payload.concluded:
        return f"⏹️ **{payload.countdown}**"
    if payload.countdown == 'Happening Now':
        return f"🔴 **{payload.countdown}**"
    return f"🕒 {payload.countdown}"


def _localize(value, tz):
    if value.tzinfo is None:
        value = pytz.utc.localize(value)
    return value.astimezone(tz)


class DiscordChannelAdapter(ChannelAdapter):
    """
    Channel adapter backed by a discord.py bot.

    The bot is attached once it is ready; calls made before that fail with
    ChannelAdapterError so callers record them as ordinary channel failures.
    """

    def __init__(self, bot: Optional[commands.Bot] = None):
        self.bot = bot

    def attach(self, bot: commands.Bot):
        self.bot = bot
        logger.info("Discord channel adapter attached to bot")

    async def resolve_channel(self, channel_id) -> discord.abc.Messageable:
        if self.bot is None:
            raise ChannelAdapterError("Discord bot is not connected", channel_id=channel_id)
        try:
            numeric_id = int(channel_id)
        except (TypeError, ValueError):
            raise ChannelAdapterError(f"Invalid channel id: {channel_id}", channel_id=channel_id)

        channel = self.bot.get_channel(numeric_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(numeric_id)
            except discord.NotFound:
                raise ChannelAdapterError(f"Channel {channel_id} not found", channel_id=channel_id)
            except discord.Forbidden:
                raise ChannelAdapterError(f"No access to channel {channel_id}", channel_id=channel_id)
        return channel

    async def _fetch_message(self, channel_id, message_id) -> discord.Message:
        channel = await self.resolve_channel(channel_id)
        try:
            return await channel.fetch_message(int(message_id))
        except discord.NotFound:
            raise MessageNotFoundError(f"Message {message_id} not found", channel_id=channel_id)
        except discord.HTTPException as e:
            raise ChannelAdapterError(f"Failed to fetch message {message_id}: {e}", channel_id=channel_id)

    async def create_message(self, target: ChannelTarget, payload: EventMessage) -> str:
        channel = await self.resolve_channel(target.channel_id)
        embed = create_event_embed(payload)
        try:
            message = await channel.send(embed=embed)
        except discord.HTTPException as e:
            raise ChannelAdapterError(f"Failed to post event: {e}", channel_id=target.channel_id)
        logger.info(f"📣 Posted event {payload.event_id} to channel {target.channel_id} as message {message.id}")

        # The message exists from here on; its id must reach the caller
        for emoji in RSVP_EMOJIS:
            try:
                await message.add_reaction(emoji)
            except discord.HTTPException as e:
                logger.warning(
                    f"⚠️ Could not add RSVP reactions to message {message.id} in channel {target.channel_id}: {e}"
                )
                break
        return str(message.id)

    async def update_message(self, channel_id: str, message_id: str, payload: EventMessage) -> None:
        message = await self._fetch_message(channel_id, message_id)
        try:
            await message.edit(embed=create_event_embed(payload))
        except discord.HTTPException as e:
            raise ChannelAdapterError(f"Failed to update message {message_id}: {e}", channel_id=channel_id)
        logger.info(f"✏️ Updated message {message_id} in channel {channel_id}")

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        message = await self._fetch_message(channel_id, message_id)
        try:
            await message.delete()
        except discord.NotFound:
            raise MessageNotFoundError(f"Message {message_id} already deleted", channel_id=channel_id)
        except discord.HTTPException as e:
            raise ChannelAdapterError(f"Failed to delete message {message_id}: {e}", channel_id=channel_id)
        logger.info(f"🗑️ Deleted message {message_id} from channel {channel_id}")

    async def fetch_attendance(self, channel_id: str, message_id: str) -> List[AttendanceRecord]:
        message = await self._fetch_message(channel_id, message_id)
        records = []
        seen = set()
        for reaction in message.reactions:
            status = RSVP_EMOJIS.get(str(reaction.emoji))
            if status is None:
                continue
            async for user in reaction.users():
                if user.bot or user.id in seen:
                    continue
                seen.add(user.id)
                records.append(AttendanceRecord(
                    person_id=str(user.id),
                    display_name=user.display_name,
                    status=status,
                ))
        return records

    def format_mention(self, person_id, display_name):
        return f"<@{person_id}>"

    async def send_message(self, channel_id: str, content: str) -> str:
        channel = await self.resolve_channel(channel_id)
        try:
            message = await channel.send(content)
        except discord.HTTPException as e:
            raise ChannelAdapterError(f"Failed to send message: {e}", channel_id=channel_id)
        return str(message.id)
