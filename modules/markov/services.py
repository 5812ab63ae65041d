import asyncio
import logging
import random
from typing import List, Optional, Sequence, Set

from .chain import ChainModel, order_for_mode, tokenize_words
from .errors import EmptyCorpusError
from .models import CorpusFilter, CorpusStats, MessageRecord
from .progress import (GENERATE_PROGRESS, STATS_PROGRESS, STEP_GENERATING, STEP_PROCESSING,
                       STEP_QUERYING, STEP_TRAINING, ProgressCallback, StepTimer)

CHUNK_SIZE = 1000
DEFAULT_WORDS = 20
MIN_WORDS = 3


def length_bounds(words: Optional[int] = None, min_words: Optional[int] = None,
                  max_words: Optional[int] = None):
    """Default bounds aim for roughly 80-100% of the requested word count."""
    words = words or DEFAULT_WORDS
    upper = max_words if max_words is not None else words
    lower = min_words if min_words is not None else max(MIN_WORDS, int(words * 0.8))
    if upper < 1:
        raise ValueError("Maximum length must be at least 1")
    return min(lower, upper), upper


def _chunks(records: Sequence[MessageRecord], size: int = CHUNK_SIZE):
    for i in range(0, len(records), size):
        yield i, records[i:i + size]


async def _load_corpus(store, corpus_filter: CorpusFilter, timer: StepTimer) -> List[MessageRecord]:
    timer.begin(STEP_QUERYING)
    records = await store.get_messages(corpus_filter)
    if not records:
        raise EmptyCorpusError()
    return records


class GenerationService:
    """Trains a throwaway chain on a corpus slice and samples one message from it."""

    def __init__(self, store, rng: Optional[random.Random] = None):
        self.store = store
        self._rng = rng

    async def run(self, corpus_filter: CorpusFilter, words: Optional[int] = None,
                  min_words: Optional[int] = None, max_words: Optional[int] = None,
                  seed: Optional[str] = None, mode=None, character_mode: bool = False,
                  progress: Optional[ProgressCallback] = None) -> str:
        min_length, max_length = length_bounds(words, min_words, max_words)
        chain = ChainModel(order=order_for_mode(mode), character_mode=character_mode, rng=self._rng)
        timer = StepTimer(GENERATE_PROGRESS, progress)

        records = await _load_corpus(self.store, corpus_filter, timer)
        total = len(records)
        timer.begin(STEP_TRAINING, total)
        for start, chunk in _chunks(records):
            for record in chunk:
                chain.train(record.text)
            timer.report(STEP_TRAINING, min(start + CHUNK_SIZE, total), total)
            await asyncio.sleep(0)

        logging.info(f"Trained order-{chain.order} chain on {total} messages "
                     f"({chain.context_count} contexts)")
        timer.begin(STEP_GENERATING)
        return chain.generate(min_length=min_length, max_length=max_length, seed=seed or None)


class StatsService:
    """Single streaming pass of aggregate statistics over a corpus slice."""

    def __init__(self, store):
        self.store = store

    async def run(self, corpus_filter: CorpusFilter,
                  progress: Optional[ProgressCallback] = None) -> CorpusStats:
        timer = StepTimer(STATS_PROGRESS, progress)
        records = await _load_corpus(self.store, corpus_filter, timer)
        total = len(records)

        authors: Set[str] = set()
        channels: Set[str] = set()
        guilds: Set[str] = set()
        unique_words: Set[str] = set()
        total_word_count = 0
        oldest = None
        newest = None

        timer.begin(STEP_PROCESSING, total)
        for start, chunk in _chunks(records):
            for record in chunk:
                authors.add(record.author_id)
                channels.add(record.channel_id)
                guilds.add(record.guild_id)
                words = tokenize_words(record.text)
                total_word_count += len(words)
                unique_words.update(word.lower() for word in words)
                if record.timestamp_millis:
                    if oldest is None or record.timestamp_millis < oldest:
                        oldest = record.timestamp_millis
                    if newest is None or record.timestamp_millis > newest:
                        newest = record.timestamp_millis
            timer.report(STEP_PROCESSING, min(start + CHUNK_SIZE, total), total)
            await asyncio.sleep(0)

        return CorpusStats(
            message_count=total,
            author_count=len(authors),
            channel_count=len(channels),
            guild_count=len(guilds),
            total_word_count=total_word_count,
            unique_word_count=len(unique_words),
            avg_words_per_message=total_word_count / total,
            oldest_timestamp=oldest,
            newest_timestamp=newest,
        )
