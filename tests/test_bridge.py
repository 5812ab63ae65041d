import asyncio
import multiprocessing.dummy

import pytest

from modules.markov.bridge import EngineBridge
from modules.markov.engine import EngineCredentials
from modules.markov.errors import (EmptyCorpusError, EngineError, EngineUnavailableError, ProtocolError,
                                   TransportError)
from modules.markov.models import CorpusFilter, CorpusStats
from modules.markov.progress import COLLECT_COMPLETE, COLLECT_PROGRESS

CREDENTIALS = EngineCredentials(token="bot-token", db_path=":memory:")


class ScriptedEngine:
    """Stands in for MarkovEngine inside the worker thread."""

    def __init__(self):
        self.calls = []
        self.credentials = None
        self.closed = False

    async def run_task(self, task_type, options, progress=None):
        self.calls.append((task_type, options))
        if task_type == "collect":
            if options["channel_id"] == "down":
                raise TransportError("Discord is having a day")
            for batch in (1, 2):
                progress(COLLECT_PROGRESS, {"batch_number": batch, "percent_complete": batch * 50.0})
            progress(COLLECT_COMPLETE, {"total_collected": 5})
            return 5
        if task_type == "generate":
            if options["filter"]["author_id"] == "ghost":
                raise EmptyCorpusError()
            if options["seed"] == "explode":
                raise RuntimeError("kaboom")
            if options["seed"] == "die":
                # ends the worker thread like a crashed process
                raise SystemExit(1)
            await asyncio.sleep(0.01)
            return f"generated for {options['seed']}"
        return CorpusStats(3, 2, 1, 1, 15, 6, 5.0, 1000, 3000).to_dict()

    async def close(self):
        self.closed = True


def make_bridge(engine):
    async def factory(credentials):
        engine.credentials = credentials
        return engine

    return EngineBridge(engine_factory=factory, context=multiprocessing.dummy, poll_interval=0.05,
                        start_timeout=5)


def run_bridge(engine, scenario):
    async def runner():
        bridge = make_bridge(engine)
        await bridge.initialize(CREDENTIALS)
        try:
            return await scenario(bridge)
        finally:
            await bridge.close()

    return asyncio.run(runner())


def test_requests_fail_before_initialize():
    async def scenario():
        bridge = make_bridge(ScriptedEngine())
        with pytest.raises(EngineUnavailableError):
            await bridge.generate(CorpusFilter(global_scope=True))
        return bridge.status()

    status = asyncio.run(scenario())
    assert status["initialized"] is False
    assert status["alive"] is False


def test_initialize_is_idempotent():
    engine = ScriptedEngine()

    async def scenario(bridge):
        await bridge.initialize(CREDENTIALS)
        return bridge.initialized

    assert run_bridge(engine, scenario) is True
    assert engine.credentials == CREDENTIALS
    assert engine.closed


def test_collect_routes_progress_to_caller():
    engine = ScriptedEngine()
    received = []

    async def scenario(bridge):
        count = await bridge.collect("222", limit="entire", delay_ms=0,
                                     on_progress=lambda event, data: received.append((event, data)))
        return count, bridge.last_progress

    count, last_progress = run_bridge(engine, scenario)
    assert count == 5
    assert [event for event, _ in received] == [COLLECT_PROGRESS, COLLECT_PROGRESS, COLLECT_COMPLETE]
    assert [data.get("percent_complete") for _, data in received[:2]] == [50.0, 100.0]
    assert last_progress["event"] == COLLECT_COMPLETE
    assert engine.calls[0][1]["limit"] == "entire"


def test_generate_and_stats_results():
    engine = ScriptedEngine()

    async def scenario(bridge):
        text = await bridge.generate(CorpusFilter(guild_id="1"), words=5, seed="hi")
        stats = await bridge.stats(CorpusFilter(guild_id="1"))
        return text, stats

    text, stats = run_bridge(engine, scenario)
    assert text == "generated for hi"
    assert isinstance(stats, CorpusStats)
    assert stats.avg_words_per_message == 5.0
    assert engine.calls[0][1]["filter"] == {"guild_id": "1", "channel_id": None, "author_id": None,
                                            "global_scope": False}


def test_error_kinds_survive_the_trip():
    engine = ScriptedEngine()

    async def scenario(bridge):
        errors = []
        for request in (
            bridge.generate(CorpusFilter(author_id="ghost")),
            bridge.collect("down"),
            bridge.generate(CorpusFilter(), seed="explode"),
        ):
            try:
                await request
            except Exception as e:
                errors.append(e)
        # the worker keeps serving after failures
        errors.append(await bridge.generate(CorpusFilter(), seed="still here"))
        return errors

    empty, transport, internal, ok = run_bridge(engine, scenario)
    assert isinstance(empty, EmptyCorpusError)
    assert isinstance(transport, TransportError)
    assert type(internal) is EngineError
    assert "kaboom" in str(internal)
    assert ok == "generated for still here"


def test_requests_run_in_submission_order():
    engine = ScriptedEngine()

    async def scenario(bridge):
        return await asyncio.gather(*(bridge.generate(CorpusFilter(), seed=str(i)) for i in range(5)))

    results = run_bridge(engine, scenario)
    assert results == [f"generated for {i}" for i in range(5)]
    assert [options["seed"] for _, options in engine.calls] == [str(i) for i in range(5)]


def test_close_makes_engine_unavailable():
    engine = ScriptedEngine()

    async def scenario():
        bridge = make_bridge(engine)
        await bridge.initialize(CREDENTIALS)
        await bridge.close()
        with pytest.raises(EngineUnavailableError):
            await bridge.stats(CorpusFilter())
        return bridge.status()

    status = asyncio.run(scenario())
    assert status == {"initialized": False, "alive": False, "busy": False, "current_task": None,
                      "last_progress": None}
    assert engine.closed


def test_uncorrelated_replies_are_protocol_errors():
    bridge = make_bridge(ScriptedEngine())
    with pytest.raises(ProtocolError):
        bridge._dispatch({"type": "result", "taskId": "generate-99", "data": "stray"})
    with pytest.raises(ProtocolError):
        bridge._dispatch("not a message")
    with pytest.raises(ProtocolError):
        bridge._dispatch({"type": "mystery"})


def test_async_progress_callbacks_finish_before_the_result():
    engine = ScriptedEngine()
    received = []

    async def on_progress(event, data):
        await asyncio.sleep(0.05)
        received.append((event, data.get("batch_number")))

    async def scenario(bridge):
        await bridge.collect("222", on_progress=on_progress)
        return list(received)

    at_return = run_bridge(engine, scenario)
    assert at_return == [(COLLECT_PROGRESS, 1), (COLLECT_PROGRESS, 2), (COLLECT_COMPLETE, None)]


def test_worker_death_rejects_pending_and_allows_restart():
    engine = ScriptedEngine()

    async def scenario(bridge):
        with pytest.raises(EngineUnavailableError):
            await bridge.generate(CorpusFilter(), seed="die")
        status = bridge.status()
        with pytest.raises(EngineUnavailableError):
            await bridge.stats(CorpusFilter())

        await bridge.initialize(CREDENTIALS)
        return status, bridge.initialized, await bridge.generate(CorpusFilter(), seed="back")

    status, restarted, text = run_bridge(engine, scenario)
    assert status["initialized"] is False
    assert status["alive"] is False
    assert restarted is True
    assert text == "generated for back"
