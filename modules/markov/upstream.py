import asyncio
import logging
from typing import List, Optional

import aiohttp
import discord

from .errors import EngineError, TransportError
from .models import ChannelRef, MessageRecord

DISCORD_API_BASE = "https://discord.com/api/v9"
MAX_BATCH_SIZE = 100


def message_to_record(message: discord.Message) -> MessageRecord:
    guild = message.guild or getattr(message.channel, "guild", None)
    return MessageRecord(
        message_id=str(message.id),
        author_id=str(message.author.id),
        channel_id=str(message.channel.id),
        guild_id=str(guild.id) if guild else "",
        text=message.content or "",
        timestamp_millis=int(message.created_at.timestamp() * 1000),
    )


class DiscordMessageSource:
    """
    Upstream message source backed by a logged-in discord.py client.

    Only the HTTP half of the client is needed: channels are fetched and their
    history paged with ``before`` cursors, newest first.
    """

    def __init__(self, client: discord.Client, user_token: Optional[str] = None,
                 request_timeout: float = 15.0):
        self.client = client
        self.user_token = user_token
        self.request_timeout = request_timeout
        self._channels = {}

    async def _get_channel(self, channel_id: str):
        channel = self._channels.get(str(channel_id))
        if channel is not None:
            return channel
        try:
            channel = self.client.get_channel(int(channel_id)) or await self.client.fetch_channel(int(channel_id))
        except discord.NotFound:
            raise ValueError(f"Channel {channel_id} not found.") from None
        except discord.Forbidden as e:
            raise EngineError(f"Missing access to channel {channel_id}: {e}") from e
        except (discord.HTTPException, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Failed to fetch channel {channel_id}: {e}") from e
        if not hasattr(channel, "history"):
            raise ValueError(f"Channel {channel_id} has no message history.")
        self._channels[str(channel_id)] = channel
        return channel

    async def resolve_channel(self, channel_id: str) -> ChannelRef:
        channel = await self._get_channel(channel_id)
        guild = getattr(channel, "guild", None)
        if guild is None:
            raise ValueError(f"Channel {channel_id} is not part of a server.")
        return ChannelRef(channel_id=str(channel.id), guild_id=str(guild.id), name=getattr(channel, "name", ""))

    async def fetch_batch(self, channel_id: str, before: Optional[str] = None,
                          limit: int = MAX_BATCH_SIZE) -> List[MessageRecord]:
        channel = await self._get_channel(channel_id)
        options = {"limit": max(1, min(limit, MAX_BATCH_SIZE))}
        if before:
            options["before"] = discord.Object(id=int(before))
        try:
            messages = [msg async for msg in channel.history(**options)]
        except discord.Forbidden as e:
            raise EngineError(f"Missing permission to read history in {channel_id}: {e}") from e
        except (discord.HTTPException, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"HTTP error fetching history from {channel_id}: {e}") from e
        return [message_to_record(msg) for msg in messages]

    async def count_messages(self, guild_id: str, channel_id: str) -> Optional[int]:
        """
        Total message count for a channel from Discord's search endpoint.

        Needs a user token; any failure degrades to ``None`` so progress simply
        stays indeterminate.
        """
        if not self.user_token:
            logging.warning("DISCORD_USER_TOKEN not set, message count lookup skipped")
            return None

        url = f"{DISCORD_API_BASE}/guilds/{guild_id}/messages/search"
        headers = {"Authorization": self.user_token, "Content-Type": "application/json"}
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, headers=headers, params={"channel_id": str(channel_id)}) as resp:
                    if resp.status != 200:
                        logging.warning(f"Discord API error: {resp.status} - {await resp.text()}")
                        return None
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logging.warning(f"Failed to fetch message count: {e}")
            return None

        total = data.get("total_results") if isinstance(data, dict) else None
        if isinstance(total, int) and not isinstance(total, bool):
            logging.info(f"Found {total} total messages in channel {channel_id}")
            return total
        return None

    async def close(self):
        self._channels.clear()
        if not self.client.is_closed():
            await self.client.close()


async def create_discord_source(token: str, user_token: Optional[str] = None) -> DiscordMessageSource:
    """Log a fresh client in over HTTP only; the gateway is never connected."""
    intents = discord.Intents.default()
    intents.message_content = True
    client = discord.Client(intents=intents)
    await client.login(token)
    logging.info("Engine Discord client logged in")
    return DiscordMessageSource(client, user_token=user_token)
