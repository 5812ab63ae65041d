import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from modules.markov.collector import Collector
from modules.markov.errors import EngineError
from modules.markov.upstream import DiscordMessageSource, message_to_record

from conftest import RecordingSleep


class LockedChannel:
    id = 222
    name = "secret"
    guild = SimpleNamespace(id=111)

    def __init__(self):
        self.history_calls = 0

    def history(self, **options):
        self.history_calls += 1
        return self._refuse()

    async def _refuse(self):
        raise discord.Forbidden(MagicMock(status=403, reason="Forbidden"), "Missing Access")
        yield


def make_source(channel):
    client = MagicMock()
    client.get_channel.return_value = channel
    return DiscordMessageSource(client)


def test_message_to_record():
    message = SimpleNamespace(
        id=5, content="hi there", author=SimpleNamespace(id=7), guild=SimpleNamespace(id=111),
        channel=SimpleNamespace(id=222), created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    record = message_to_record(message)
    assert (record.message_id, record.author_id, record.channel_id, record.guild_id) == ("5", "7", "222", "111")
    assert record.timestamp_millis == 1704067200000


def test_resolve_channel():
    ref = asyncio.run(make_source(LockedChannel()).resolve_channel("222"))
    assert (ref.channel_id, ref.guild_id, ref.name) == ("222", "111", "secret")


def test_missing_permission_is_not_retried():
    channel = LockedChannel()
    source = make_source(channel)
    store = MagicMock()
    store.is_channel_fully_collected = AsyncMock(return_value=False)
    store.add_messages = AsyncMock()
    sleep = RecordingSleep()

    async def scenario():
        ref = await source.resolve_channel("222")
        await Collector(source, store, sleep=sleep).collect(ref, limit=10, delay_ms=0)

    with pytest.raises(EngineError):
        asyncio.run(scenario())
    assert channel.history_calls == 1
    assert sleep.calls == []
    store.add_messages.assert_not_awaited()
