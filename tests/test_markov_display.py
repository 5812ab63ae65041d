import asyncio
from unittest.mock import AsyncMock, MagicMock

import discord

from modules.markov.errors import EmptyCorpusError, EngineError, EngineUnavailableError, TransportError
from modules.markov.models import CorpusStats
from modules.markov.progress import StepTimer, format_time_remaining
from modules.markov_display import (InteractionProgress, build_stats_embed, describe_error, format_timestamp,
                                    progress_emoji, render_collect_progress)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_interaction():
    interaction = MagicMock()
    interaction.edit_original_response = AsyncMock()
    follow_up = MagicMock()
    follow_up.edit = AsyncMock()
    interaction.followup.send = AsyncMock(return_value=follow_up)
    return interaction, follow_up


def test_format_time_remaining():
    assert format_time_remaining(42) == "42s"
    assert format_time_remaining(185) == "3m 5s"
    assert format_time_remaining(3723) == "1h 2m 3s"
    assert format_time_remaining(-5) == "0s"


def test_step_timer_estimates_only_mid_step():
    clock = FakeClock()
    events = []
    timer = StepTimer("generateProgress", lambda e, d: events.append(d), clock=clock)
    timer.begin("training", 100)
    clock.now = 2.0
    timer.report("training", 50, 100)
    timer.report("training", 100, 100)

    assert [d["estimated_time_remaining"] for d in events] == [None, 2.0, None]
    assert events[1]["elapsed_millis"] == 2000


def test_progress_emoji_thresholds():
    assert [progress_emoji(p) for p in (0, 10, 30, 60, 90)] == ["⏳", "🟢", "🟡", "🟠", "🔴"]


def test_render_collect_progress_limited_and_entire():
    limited = render_collect_progress({"total_collected": 50, "limit": 200, "percent_complete": 25.0,
                                       "batch_number": 1}, "#general")
    assert "50/200 messages (25.0%)" in limited
    assert "Batches processed: 1" in limited

    entire = render_collect_progress({"total_collected": 300, "limit": "entire", "percent_complete": 0.0,
                                      "batch_number": 3}, "#general", new_only=True)
    assert "300 messages collected" in entire
    assert "%" not in entire
    assert "Only collecting new messages" in entire


def test_describe_error_distinguishes_kinds():
    messages = {describe_error(e) for e in (
        EmptyCorpusError(), TransportError("x"), EngineUnavailableError("y"), EngineError("z"),
    )}
    assert len(messages) == 4
    assert "/markov collect" in describe_error(EmptyCorpusError())


def test_format_timestamp():
    assert format_timestamp(None) == "Unknown"
    assert format_timestamp(1700000000123) == "<t:1700000000:F>"


def test_stats_embed_fields():
    stats = CorpusStats(1234, 5, 2, 1, 6170, 900, 5.0, 1000, 2000)
    embed = build_stats_embed(stats, "🏠 This server", 12.3)
    fields = {field.name: field.value for field in embed.fields}
    assert fields["Messages"] == "1,234"
    assert fields["Words Per Message"] == "5.0"
    assert embed.footer.text == "Generated in 12ms"


def test_updates_are_throttled():
    clock = FakeClock()
    interaction, _ = make_interaction()
    reporter = InteractionProgress(interaction, clock=clock)

    async def scenario():
        await reporter.update("one")
        clock.now = 2
        await reporter.update("two")
        await reporter.update("forced", force=True)
        clock.now = 10
        await reporter.update("three")

    asyncio.run(scenario())
    contents = [call.kwargs["content"] for call in interaction.edit_original_response.await_args_list]
    assert contents == ["one", "forced", "three"]


def test_long_jobs_move_to_follow_up():
    clock = FakeClock()
    interaction, follow_up = make_interaction()
    reporter = InteractionProgress(interaction, clock=clock)

    async def scenario():
        clock.now = 14 * 60 + 1
        await reporter.update("late progress")
        await reporter.finish("done")

    asyncio.run(scenario())
    assert reporter.using_follow_up
    interaction.followup.send.assert_awaited_once()
    interaction.edit_original_response.assert_not_awaited()
    assert [call.kwargs["content"] for call in follow_up.edit.await_args_list] == ["late progress", "done"]


def test_finish_falls_back_to_follow_up():
    interaction, _ = make_interaction()
    interaction.edit_original_response.side_effect = discord.HTTPException(MagicMock(status=401), "expired")
    reporter = InteractionProgress(interaction, clock=FakeClock())

    asyncio.run(reporter.finish("all done"))
    interaction.followup.send.assert_awaited_once_with(content="all done")
