import asyncio
import logging
import time
from typing import List, Optional, Set, Union

from .errors import TransportError
from .models import ChannelRef, MessageRecord
from .progress import COLLECT_COMPLETE, COLLECT_PROGRESS, ProgressCallback, emit

ENTIRE_CHANNEL = "entire"
BATCH_SIZE = 100
MAX_RETRIES = 3
DEFAULT_LIMIT = 1000
DEFAULT_DELAY_MS = 1000

Limit = Union[int, str]


def parse_limit(limit: Optional[Limit]) -> Limit:
    """Normalize a collection limit to a positive int or ``"entire"``."""
    if limit is None:
        return DEFAULT_LIMIT
    if isinstance(limit, str):
        if limit.lower() == ENTIRE_CHANNEL:
            return ENTIRE_CHANNEL
        limit = int(limit)
    if isinstance(limit, bool) or limit < 1:
        raise ValueError(f"Collection limit must be a positive integer or '{ENTIRE_CHANNEL}'")
    return int(limit)


class Collector:
    """
    Walks a channel's history backward in batches and stores what it finds.

    When the channel was fully collected before, the walk stops at the first
    message that is already stored, so repeat runs only fetch new history.
    """

    def __init__(self, source, store, clock=time.monotonic, sleep=asyncio.sleep):
        self.source = source
        self.store = store
        self._clock = clock
        self._sleep = sleep

    async def collect(self, channel: ChannelRef, author_id: Optional[str] = None,
                      limit: Optional[Limit] = DEFAULT_LIMIT, delay_ms: int = DEFAULT_DELAY_MS,
                      use_count_oracle: bool = True,
                      progress: Optional[ProgressCallback] = None) -> int:
        limit = parse_limit(limit)
        entire_channel = limit == ENTIRE_CHANNEL
        delay = max(0, delay_ms) / 1000
        start_time = self._clock()

        was_fully_collected = await self.store.is_channel_fully_collected(channel.guild_id, channel.channel_id)
        existing_ids: Set[str] = set()
        if was_fully_collected:
            existing_ids = await self.store.get_existing_message_ids(channel.guild_id, channel.channel_id)
            logging.info(f"Channel {channel.name or channel.channel_id} was fully collected before, "
                         f"{len(existing_ids)} known messages; collecting new messages only")

        total_message_count = None
        if entire_channel and not author_id and use_count_oracle:
            try:
                total_message_count = await self.source.count_messages(channel.guild_id, channel.channel_id)
            except Exception as e:
                logging.warning(f"Message count lookup failed for {channel.name or channel.channel_id}: {e}")
                total_message_count = None

        target = total_message_count if entire_channel else limit
        collected: List[MessageRecord] = []
        last_id: Optional[str] = None
        batch_number = 0
        percent_complete = 0.0

        while entire_channel or len(collected) < limit:
            if batch_number > 0 and delay:
                await self._sleep(delay)

            batch_limit = BATCH_SIZE if entire_channel else min(BATCH_SIZE, limit - len(collected))
            batch = await self._fetch_with_retry(channel.channel_id, last_id, batch_limit, delay)
            if not batch:
                break

            fresh = batch
            boundary_found = False
            if was_fully_collected:
                for index, record in enumerate(batch):
                    if record.message_id in existing_ids:
                        fresh = batch[:index]
                        boundary_found = True
                        break

            valid = [
                record for record in fresh
                if record.has_text() and (author_id is None or record.author_id == str(author_id))
            ]

            collected.extend(valid)
            last_id = batch[-1].message_id
            batch_number += 1

            elapsed = self._clock() - start_time
            messages_per_second = len(collected) / elapsed if elapsed > 0 else 0.0
            estimated_time_remaining = None
            if target and messages_per_second > 0:
                estimated_time_remaining = max(0.0, (target - len(collected)) / messages_per_second)
            if target:
                percent_complete = max(percent_complete, min(100.0, len(collected) / target * 100))

            if batch_number == 1 or batch_number % 10 == 0:
                logging.info(f"Collecting {channel.name or channel.channel_id}: batch {batch_number}, "
                             f"{len(collected)} messages")

            emit(progress, COLLECT_PROGRESS, {
                "batch_number": batch_number,
                "messages_collected": len(valid),
                "total_collected": len(collected),
                "limit": limit,
                "percent_complete": percent_complete,
                "channel_name": channel.name,
                "elapsed_millis": int(elapsed * 1000),
                "messages_per_second": messages_per_second,
                "estimated_time_remaining": estimated_time_remaining,
            })

            if boundary_found:
                logging.info(f"Reached previously collected history in {channel.name or channel.channel_id}")
                break

        if collected:
            await self.store.add_messages(
                collected,
                channel.guild_id,
                fully_collected_channel_id=channel.channel_id if entire_channel else None,
                channel_name=channel.name or None,
            )
        elif entire_channel and not was_fully_collected:
            # An empty channel still counts as a complete sweep
            await self.store.add_messages([], channel.guild_id, fully_collected_channel_id=channel.channel_id,
                                          channel_name=channel.name or None)

        emit(progress, COLLECT_COMPLETE, {
            "total_collected": len(collected),
            "channel_name": channel.name,
            "user_filtered": author_id is not None,
            "entire_channel": entire_channel,
            "new_messages_only": was_fully_collected,
            "total_message_count": total_message_count,
            "percent_complete": 100.0,
        })
        logging.info(f"Collected {len(collected)} messages from {channel.name or channel.channel_id}")
        return len(collected)

    async def _fetch_with_retry(self, channel_id: str, before: Optional[str], limit: int,
                                delay: float) -> List[MessageRecord]:
        attempt = 0
        while True:
            try:
                return await self.source.fetch_batch(channel_id, before=before, limit=limit)
            except TransportError as e:
                attempt += 1
                if attempt >= MAX_RETRIES:
                    logging.error(f"Giving up on {channel_id} after {attempt} attempts: {e}")
                    raise
                logging.warning(f"Fetch attempt {attempt} for {channel_id} failed, retrying: {e}")
                await self._sleep(delay * attempt)
