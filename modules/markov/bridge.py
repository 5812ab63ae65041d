import asyncio
import inspect
import itertools
import logging
import multiprocessing
import queue
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .collector import DEFAULT_DELAY_MS, DEFAULT_LIMIT
from .engine import TASK_COLLECT, TASK_GENERATE, TASK_STATS, EngineCredentials, build_discord_engine
from .errors import EngineUnavailableError, ProtocolError, error_from_payload
from .models import CorpusFilter, CorpusStats
from .progress import ProgressCallback
from .worker import (MSG_ERROR, MSG_INITIALIZE, MSG_PROGRESS, MSG_READY, MSG_RESULT, MSG_SHUTDOWN,
                     run_worker)


@dataclass
class _RunningTask:
    task_id: str
    task_type: str
    on_progress: Optional[ProgressCallback] = None
    # Awaitable callbacks still running; drained before the request resolves
    callbacks: List[asyncio.Future] = field(default_factory=list)


class EngineBridge:
    """
    Runs a MarkovEngine in an isolated worker and relays results and progress.

    Requests are admitted strictly FIFO, one running at a time. Progress
    broadcasts from the worker carry no task id; they are delivered to the
    ``on_progress`` callback of the request that is currently running.

    ``context`` is anything exposing ``Process`` and ``Queue``: a
    ``multiprocessing`` spawn context by default, or ``multiprocessing.dummy``
    to run the worker on a thread.
    """

    def __init__(self, engine_factory=build_discord_engine, context=None,
                 poll_interval: float = 0.25, start_timeout: float = 30.0):
        self._engine_factory = engine_factory
        self._context = context or multiprocessing.get_context("spawn")
        self.poll_interval = poll_interval
        self.start_timeout = start_timeout

        self._process = None
        self._requests = None
        self._responses = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._current: Optional[_RunningTask] = None
        self._admission = asyncio.Lock()
        self._task_ids = itertools.count(1)
        self._initialized = False
        self._closing = False
        self.last_progress: Optional[Dict[str, Any]] = None

    @property
    def alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    @property
    def initialized(self) -> bool:
        return self._initialized and self.alive

    @property
    def busy(self) -> bool:
        return self._current is not None or self._admission.locked()

    @property
    def current_task_type(self) -> Optional[str]:
        return self._current.task_type if self._current else None

    def status(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "alive": self.alive,
            "busy": self.busy,
            "current_task": self.current_task_type,
            "last_progress": self.last_progress,
        }

    async def _start(self):
        if self.alive:
            return
        self._closing = False
        self._requests = self._context.Queue()
        self._responses = self._context.Queue()
        self._process = self._context.Process(
            target=run_worker,
            args=(self._requests, self._responses, self._engine_factory),
        )
        self._process.daemon = True
        self._process.start()

        try:
            ready = await asyncio.to_thread(self._responses.get, True, self.start_timeout)
        except queue.Empty:
            self._stop_process()
            raise EngineUnavailableError("Markov worker did not start in time") from None
        if not isinstance(ready, dict) or ready.get("type") != MSG_READY:
            self._stop_process()
            raise EngineUnavailableError(f"Markov worker failed to start: {ready!r}")

        self._reader_task = asyncio.create_task(self._read_responses())
        logging.info("Markov worker started")

    async def initialize(self, credentials: Optional[EngineCredentials] = None):
        """Start the worker and build its engine. Repeat calls are no-ops while it lives."""
        async with self._admission:
            if self.initialized:
                return
            await self._start()
            await self._send(MSG_INITIALIZE, {"credentials": credentials})
            self._initialized = True
            logging.info("Markov engine initialized")

    async def collect(self, channel_id: str, *, author_id: Optional[str] = None, limit=DEFAULT_LIMIT,
                      delay_ms: int = DEFAULT_DELAY_MS, use_count_oracle: bool = True,
                      on_progress: Optional[ProgressCallback] = None) -> int:
        return await self._request(TASK_COLLECT, {
            "channel_id": str(channel_id),
            "author_id": str(author_id) if author_id else None,
            "limit": limit,
            "delay_ms": delay_ms,
            "use_count_oracle": use_count_oracle,
        }, on_progress)

    async def generate(self, corpus_filter: CorpusFilter, *, words: Optional[int] = None,
                       min_words: Optional[int] = None, max_words: Optional[int] = None,
                       seed: Optional[str] = None, mode=None, character_mode: bool = False,
                       on_progress: Optional[ProgressCallback] = None) -> str:
        return await self._request(TASK_GENERATE, {
            "filter": corpus_filter.to_dict(),
            "words": words,
            "min_words": min_words,
            "max_words": max_words,
            "seed": seed,
            "mode": mode,
            "character_mode": character_mode,
        }, on_progress)

    async def stats(self, corpus_filter: CorpusFilter, *,
                    on_progress: Optional[ProgressCallback] = None) -> CorpusStats:
        data = await self._request(TASK_STATS, {"filter": corpus_filter.to_dict()}, on_progress)
        return CorpusStats.from_dict(data)

    async def _request(self, task_type: str, options: Dict[str, Any],
                       on_progress: Optional[ProgressCallback] = None):
        async with self._admission:
            if not self.initialized:
                raise EngineUnavailableError("Markov engine is not initialized")
            return await self._send(task_type, options, on_progress)

    async def _send(self, task_type: str, options: Dict[str, Any],
                    on_progress: Optional[ProgressCallback] = None):
        if not self.alive:
            raise EngineUnavailableError("Markov worker is not running")

        task_id = f"{task_type}-{next(self._task_ids)}"
        future = asyncio.get_running_loop().create_future()
        self._pending[task_id] = future
        running = self._current = _RunningTask(task_id, task_type, on_progress)
        try:
            self._requests.put({"type": task_type, "options": options, "taskId": task_id})
            return await future
        finally:
            self._current = None
            self._pending.pop(task_id, None)
            if running.callbacks:
                await asyncio.gather(*running.callbacks, return_exceptions=True)

    async def _read_responses(self):
        while True:
            try:
                message = await asyncio.to_thread(self._responses.get, True, self.poll_interval)
            except queue.Empty:
                if not self.alive:
                    self._handle_worker_exit()
                    return
                continue
            except (EOFError, OSError) as e:
                logging.error(f"Lost connection to Markov worker: {e}")
                self._handle_worker_exit()
                return

            try:
                self._dispatch(message)
            except ProtocolError as e:
                logging.debug(f"Ignored bridge message: {e}")

    def _dispatch(self, message):
        if not isinstance(message, dict) or "type" not in message:
            raise ProtocolError(f"Malformed message from worker: {message!r}")

        message_type = message["type"]
        if message_type == MSG_PROGRESS:
            self.last_progress = {"event": message.get("event"), "data": message.get("data")}
            if self._current is not None and self._current.on_progress is not None:
                self._deliver_progress(self._current, message.get("event"), message.get("data") or {})
            return

        if message_type not in (MSG_RESULT, MSG_ERROR):
            raise ProtocolError(f"Unknown message type from worker: {message_type}")

        future = self._pending.pop(message.get("taskId"), None)
        if future is None or future.done():
            raise ProtocolError(f"Reply for unknown task {message.get('taskId')!r}")
        if message_type == MSG_RESULT:
            future.set_result(message.get("data"))
        else:
            future.set_exception(error_from_payload(message.get("kind"), message.get("error") or "Unknown error"))

    def _deliver_progress(self, running: _RunningTask, event: str, data: Dict[str, Any]):
        try:
            result = running.on_progress(event, data)
            if inspect.isawaitable(result):
                previous = running.callbacks[-1] if running.callbacks else None
                callback_task = asyncio.ensure_future(_after(previous, result))
                callback_task.add_done_callback(_log_callback_failure)
                running.callbacks.append(callback_task)
        except Exception as e:
            logging.warning(f"Progress callback failed for {event}: {e}")

    def _handle_worker_exit(self):
        exitcode = getattr(self._process, "exitcode", None)
        if not self._closing:
            logging.error(f"Markov worker exited unexpectedly (exit code {exitcode})")
        self._initialized = False
        self._fail_pending(EngineUnavailableError(f"Markov worker exited (exit code {exitcode})"))

    def _fail_pending(self, error: Exception):
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(error)

    def _stop_process(self):
        if self._process is None:
            return
        if self._process.is_alive() and hasattr(self._process, "terminate"):
            self._process.terminate()
        self._process = None

    async def close(self):
        """Ask the worker to shut down, then reap it."""
        self._closing = True
        if self.alive and self._requests is not None:
            self._requests.put({"type": MSG_SHUTDOWN, "options": {}, "taskId": "shutdown"})
            await asyncio.to_thread(self._process.join, 10)
        self._stop_process()

        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        self._initialized = False
        self._fail_pending(EngineUnavailableError("Markov engine shut down"))
        logging.info("Markov engine bridge closed")


async def _after(previous: Optional[asyncio.Future], awaitable):
    """Run progress callbacks of one request in arrival order."""
    if previous is not None:
        await asyncio.gather(previous, return_exceptions=True)
    return await awaitable

def _log_callback_failure(future: asyncio.Future):
    if not future.cancelled() and future.exception() is not None:
        logging.warning(f"Progress callback failed: {future.exception()}")
