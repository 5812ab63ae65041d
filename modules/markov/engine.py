"""
The Markov engine core.

One implementation of collect/generate/stats, parameterized over an upstream
message source and a corpus store. It runs unchanged in-process (tests,
scripts) or inside the worker process driven by :mod:`modules.markov.worker`.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .collector import DEFAULT_DELAY_MS, DEFAULT_LIMIT, Collector
from .models import CorpusFilter, CorpusStats
from .progress import ProgressCallback
from .services import GenerationService, StatsService

TASK_COLLECT = "collect"
TASK_GENERATE = "generate"
TASK_STATS = "stats"
TASK_TYPES = (TASK_COLLECT, TASK_GENERATE, TASK_STATS)


@dataclass(frozen=True)
class EngineCredentials:
    """Everything the worker needs to open its own Discord session and corpus store."""

    token: str
    user_token: Optional[str] = None
    db_path: str = "database/markov.sqlite"

    def __repr__(self):
        return f"EngineCredentials(db_path={self.db_path!r}, user_token={'set' if self.user_token else 'unset'})"


class MarkovEngine:
    def __init__(self, source, store, rng: Optional[random.Random] = None, sleep=asyncio.sleep):
        self.source = source
        self.store = store
        self.collector = Collector(source, store, sleep=sleep)
        self.generation = GenerationService(store, rng=rng)
        self.statistics = StatsService(store)

    async def collect(self, channel_id: str, author_id: Optional[str] = None, limit=DEFAULT_LIMIT,
                      delay_ms: int = DEFAULT_DELAY_MS, use_count_oracle: bool = True,
                      progress: Optional[ProgressCallback] = None) -> int:
        channel = await self.source.resolve_channel(str(channel_id))
        return await self.collector.collect(
            channel,
            author_id=str(author_id) if author_id else None,
            limit=limit,
            delay_ms=delay_ms,
            use_count_oracle=use_count_oracle,
            progress=progress,
        )

    async def generate(self, corpus_filter: CorpusFilter, words: Optional[int] = None,
                       min_words: Optional[int] = None, max_words: Optional[int] = None,
                       seed: Optional[str] = None, mode=None, character_mode: bool = False,
                       progress: Optional[ProgressCallback] = None) -> str:
        return await self.generation.run(
            corpus_filter, words=words, min_words=min_words, max_words=max_words,
            seed=seed, mode=mode, character_mode=character_mode, progress=progress,
        )

    async def stats(self, corpus_filter: CorpusFilter,
                    progress: Optional[ProgressCallback] = None) -> CorpusStats:
        return await self.statistics.run(corpus_filter, progress=progress)

    async def run_task(self, task_type: str, options: Optional[Dict[str, Any]],
                       progress: Optional[ProgressCallback] = None):
        """Dispatch a bridge request. Returns plain data that survives pickling."""
        options = dict(options or {})
        if task_type == TASK_COLLECT:
            return await self.collect(
                options["channel_id"],
                author_id=options.get("author_id"),
                limit=options.get("limit", DEFAULT_LIMIT),
                delay_ms=options.get("delay_ms", DEFAULT_DELAY_MS),
                use_count_oracle=options.get("use_count_oracle", True),
                progress=progress,
            )
        if task_type == TASK_GENERATE:
            return await self.generate(
                CorpusFilter.from_dict(options.get("filter")),
                words=options.get("words"),
                min_words=options.get("min_words"),
                max_words=options.get("max_words"),
                seed=options.get("seed"),
                mode=options.get("mode"),
                character_mode=bool(options.get("character_mode", False)),
                progress=progress,
            )
        if task_type == TASK_STATS:
            stats = await self.stats(CorpusFilter.from_dict(options.get("filter")), progress=progress)
            return stats.to_dict()
        raise ValueError(f"Unknown task type: {task_type}")

    async def close(self):
        for resource in (self.source, self.store):
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logging.error(f"Error closing engine resource {type(resource).__name__}: {e}")


async def build_discord_engine(credentials: EngineCredentials) -> MarkovEngine:
    """Default engine factory used by the worker process."""
    from database_modules.corpus_store import CorpusStore
    from .upstream import create_discord_source

    store = CorpusStore(credentials.db_path)
    await store.initialize()
    source = await create_discord_source(credentials.token, credentials.user_token)
    return MarkovEngine(source, store)
