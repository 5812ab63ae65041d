import pytest

from modules.markov.errors import TransportError
from modules.markov.models import ChannelRef, MessageRecord

GUILD_ID = "111"
CHANNEL_ID = "222"


def make_record(message_id, text="hello there friend", author_id="u1", channel_id=CHANNEL_ID,
                guild_id=GUILD_ID, timestamp_millis=None):
    return MessageRecord(
        message_id=str(message_id),
        author_id=str(author_id),
        channel_id=str(channel_id),
        guild_id=str(guild_id),
        text=text,
        timestamp_millis=timestamp_millis if timestamp_millis is not None else int(message_id) * 1000,
    )


class FakeSource:
    """Channel history served newest first, paged with ``before`` cursors."""

    def __init__(self, history=None, total=None, failures=0, channel=None):
        self.history = list(history or [])
        self.total = total
        self.failures = failures
        self.channel = channel or ChannelRef(CHANNEL_ID, GUILD_ID, "general")
        self.fetch_calls = []
        self.count_calls = 0
        self.closed = False

    def add_newer(self, records):
        self.history = list(records) + self.history

    async def resolve_channel(self, channel_id):
        if str(channel_id) != self.channel.channel_id:
            raise ValueError(f"Channel {channel_id} not found.")
        return self.channel

    async def fetch_batch(self, channel_id, before=None, limit=100):
        self.fetch_calls.append((channel_id, before, limit))
        if self.failures:
            self.failures -= 1
            raise TransportError("upstream hiccup")
        start = 0
        if before is not None:
            ids = [record.message_id for record in self.history]
            start = ids.index(before) + 1
        return self.history[start:start + limit]

    async def count_messages(self, guild_id, channel_id):
        self.count_calls += 1
        return self.total

    async def close(self):
        self.closed = True


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "markov.sqlite")


@pytest.fixture
def history():
    """200 messages, newest first, ids 1200 down to 1001."""
    return [make_record(1200 - i, text=f"message number {i} here") for i in range(200)]
