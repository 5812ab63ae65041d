# modules/markov_display.py

import time
import logging
from datetime import datetime, timezone
from typing import Optional

import discord

from modules.markov.errors import (EmptyCorpusError, EngineUnavailableError, ModelEmptyError,
                                   TransportError)
from modules.markov.models import CorpusStats
from modules.markov.progress import format_time_remaining

# Interaction tokens die after 15 minutes, so long jobs move to a follow-up at 14
INTERACTION_TIMEOUT_SECONDS = 15 * 60
SAFETY_MARGIN_SECONDS = 60
UPDATE_INTERVAL_SECONDS = 5


def progress_emoji(percent_complete: float) -> str:
    if percent_complete <= 0:
        return "⏳"
    if percent_complete < 25:
        return "🟢"
    if percent_complete < 50:
        return "🟡"
    if percent_complete < 75:
        return "🟠"
    return "🔴"


def render_collect_progress(data: dict, target: str, new_only: bool = False) -> str:
    total = data.get("total_collected", 0)
    limit = data.get("limit")
    percent = data.get("percent_complete") or 0.0
    lines = [f"⏳ Collecting messages from {target}..."]
    if limit == "entire" and percent > 0:
        lines.append(f"{progress_emoji(percent)} Progress: {total} messages collected ({percent:.1f}% complete)")
    elif limit == "entire":
        lines.append(f"{progress_emoji(percent)} Progress: {total} messages collected")
    else:
        lines.append(f"{progress_emoji(percent)} Progress: {total}/{limit} messages ({percent:.1f}%)")
    eta = data.get("estimated_time_remaining")
    if eta is not None:
        lines.append(f"⏱️ ETA: {format_time_remaining(eta)} ({data.get('messages_per_second', 0):.1f} msgs/sec)")
        lines.append(f"⌛ Elapsed: {format_time_remaining(data.get('elapsed_millis', 0) / 1000)}")
    lines.append(f"📚 Batches processed: {data.get('batch_number', 0)}")
    if new_only:
        lines.append("⚠️ Only collecting new messages since last collection.")
    return "\n".join(lines)


def render_step_progress(title: str, data: dict) -> str:
    step = data.get("step", "")
    lines = [f"⏳ {title}...", f"📊 Step: {step}"]
    total = data.get("total") or 0
    if step in ("training", "processing") and total:
        done = data.get("progress", 0)
        lines.append(f"🔄 {step.capitalize()}: {done}/{total} messages ({done / total * 100:.1f}%)")
    lines.append(f"⌛ Elapsed: {format_time_remaining(data.get('elapsed_millis', 0) / 1000)}")
    eta = data.get("estimated_time_remaining")
    if eta is not None:
        lines.append(f"⏱️ ETA: {format_time_remaining(eta)}")
    return "\n".join(lines)


def describe_error(error: Exception) -> str:
    """One line telling the user whether it was no data, a hiccup worth retrying, or our fault."""
    if isinstance(error, EmptyCorpusError):
        return "❌ No messages found with those filters. Collect some first with `/markov collect`."
    if isinstance(error, ModelEmptyError):
        return "❌ Those messages are too short to learn anything from."
    if isinstance(error, TransportError):
        return f"❌ Discord didn't cooperate, try again in a bit. ({error})"
    if isinstance(error, EngineUnavailableError):
        return "❌ The Markov engine is down. Try again once the bot has restarted it."
    return f"❌ Something broke on my end: {error}"


def format_timestamp(timestamp_millis: Optional[int]) -> str:
    if not timestamp_millis:
        return "Unknown"
    moment = datetime.fromtimestamp(timestamp_millis / 1000, tz=timezone.utc)
    return f"<t:{int(moment.timestamp())}:F>"


def build_stats_embed(stats: CorpusStats, filters: str, elapsed_ms: float) -> discord.Embed:
    embed = discord.Embed(
        title="Markov Chain Data Statistics",
        description=f"**Filters Applied:**\n{filters}",
        color=discord.Color.blue()
    )
    embed.add_field(name="Messages", value=f"{stats.message_count:,}", inline=True)
    embed.add_field(name="Unique Authors", value=f"{stats.author_count:,}", inline=True)
    embed.add_field(name="Channels", value=f"{stats.channel_count:,}", inline=True)
    embed.add_field(name="Total Words", value=f"{stats.total_word_count:,}", inline=True)
    embed.add_field(name="Unique Words", value=f"{stats.unique_word_count:,}", inline=True)
    embed.add_field(name="Words Per Message", value=f"{stats.avg_words_per_message:.1f}", inline=True)
    embed.add_field(name="Oldest Message", value=format_timestamp(stats.oldest_timestamp), inline=False)
    embed.add_field(name="Newest Message", value=format_timestamp(stats.newest_timestamp), inline=False)
    embed.set_footer(text=f"Generated in {elapsed_ms:.0f}ms")
    return embed


class InteractionProgress:
    """
    Throttled progress edits for a deferred interaction.

    Past the 14 minute mark edits move to a follow-up message, since the
    original response can no longer be edited after 15 minutes.
    """

    def __init__(self, interaction: discord.Interaction, clock=time.monotonic):
        self.interaction = interaction
        self._clock = clock
        self.started = clock()
        self._last_update = None
        self._follow_up = None
        self.using_follow_up = False

    def _expiring(self) -> bool:
        return self._clock() - self.started > INTERACTION_TIMEOUT_SECONDS - SAFETY_MARGIN_SECONDS

    async def update(self, content: str, force: bool = False):
        now = self._clock()
        if not force and self._last_update is not None and now - self._last_update < UPDATE_INTERVAL_SECONDS:
            return
        self._last_update = now
        try:
            if self._expiring() and not self.using_follow_up:
                self.using_follow_up = True
                self._follow_up = await self.interaction.followup.send(
                    "🔄 Continuing operation...\nUpdates will now appear in this message.", wait=True
                )
            if self._follow_up is not None:
                await self._follow_up.edit(content=content)
            else:
                await self.interaction.edit_original_response(content=content)
        except discord.HTTPException as e:
            logging.warning(f"Failed to update progress message: {e}")

    async def finish(self, content: Optional[str] = None, embed: Optional[discord.Embed] = None):
        try:
            if self._follow_up is not None:
                await self._follow_up.edit(content=content, embed=embed)
            else:
                await self.interaction.edit_original_response(content=content, embed=embed)
        except discord.HTTPException as e:
            logging.warning(f"Failed to send final message: {e}")
            fallback = {"content": content or "Done."}
            if embed is not None:
                fallback["embed"] = embed
            await self.interaction.followup.send(**fallback)
