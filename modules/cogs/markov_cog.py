import time
import logging
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from modules.markov.errors import MarkovError
from modules.markov.models import CorpusFilter
from modules.markov_display import (InteractionProgress, build_stats_embed, describe_error,
                                    render_collect_progress, render_step_progress)

SOURCE_CHOICES = [
    app_commands.Choice(name="This server", value="guild"),
    app_commands.Choice(name="Everywhere (global)", value="global"),
]
MODE_CHOICES = [
    app_commands.Choice(name="Bigram (1 word of context)", value="bigram"),
    app_commands.Choice(name="Trigram (2 words of context)", value="trigram"),
    app_commands.Choice(name="Quadgram (3 words of context)", value="quadgram"),
]


def build_filter(guild_id, source: Optional[str] = None, channel_id=None, author_id=None) -> CorpusFilter:
    if source == "global":
        return CorpusFilter(author_id=str(author_id) if author_id else None, global_scope=True)
    return CorpusFilter(
        guild_id=str(guild_id) if guild_id else None,
        channel_id=str(channel_id) if channel_id else None,
        author_id=str(author_id) if author_id else None,
    )


def describe_filter(corpus_filter: CorpusFilter, channel=None, user=None) -> str:
    parts = ["🌐 Global" if corpus_filter.global_scope else "🏠 This server"]
    if channel is not None:
        parts.append(f"📝 Channel: #{channel.name}")
    if user is not None:
        parts.append(f"👤 User: @{user}")
    elif corpus_filter.author_id:
        parts.append(f"👤 User ID: {corpus_filter.author_id}")
    return "\n".join(parts)


class MarkovCog(commands.Cog):
    def __init__(self, bot):
        self.bot = bot
        self.bridge = bot.markov_bridge
        self.collect_all_running = False

    markov = app_commands.Group(name="markov", description="Generate text using Markov chains trained on chat messages")

    @staticmethod
    def _author_id(user: Optional[discord.User], user_id: Optional[str]) -> Optional[str]:
        if user is not None:
            return str(user.id)
        if user_id and user_id.strip().isdigit():
            return user_id.strip()
        return None

    @markov.command(name="generate")
    @app_commands.describe(source="Where to get messages from", channel="Specific channel to use",
                           user="Generate text in the style of a specific user",
                           user_id="User ID to use if the user is not in the server",
                           words="How many words to generate (default: 20)",
                           seed="Start with these words; needs 1 word for bigram, 2 for trigram (default), 3 for quadgram",
                           mode="How much context the chain looks at",
                           character_mode="Generate text character by character (cursed)")
    @app_commands.choices(source=SOURCE_CHOICES, mode=MODE_CHOICES)
    async def generate(self, interaction: discord.Interaction, source: Optional[app_commands.Choice[str]] = None,
                       channel: Optional[discord.TextChannel] = None, user: Optional[discord.User] = None,
                       user_id: Optional[str] = None, words: Optional[app_commands.Range[int, 1, 500]] = None,
                       seed: Optional[str] = None, mode: Optional[app_commands.Choice[str]] = None,
                       character_mode: bool = False):
        """Create a new message based on collected chat data."""
        await interaction.response.defer()
        corpus_filter = build_filter(interaction.guild_id, source.value if source else None,
                                     channel.id if channel else None, self._author_id(user, user_id))
        reporter = InteractionProgress(interaction)
        started = time.perf_counter()

        async def on_progress(event, data):
            await reporter.update(render_step_progress("Generating message", data))

        try:
            result = await self.bridge.generate(
                corpus_filter, words=words, seed=seed, mode=mode.value if mode else None,
                character_mode=character_mode, on_progress=on_progress,
            )
        except MarkovError as e:
            logging.warning(f"Failed to generate Markov message: {e}")
            await reporter.finish(describe_error(e))
            return

        elapsed_ms = (time.perf_counter() - started) * 1000
        logging.info(f"Generated Markov message in {elapsed_ms:.0f}ms")
        filters = describe_filter(corpus_filter, channel, user).replace("\n", ", ")
        await reporter.finish(f"{result}\n-# - Generated in {elapsed_ms:.0f}ms\n-# - Filters: {filters}")
        self.bot.increment_command_count()

    @markov.command(name="info")
    @app_commands.describe(source="Where to get message statistics from", channel="Specific channel",
                           user="Statistics for a specific user's messages",
                           user_id="User ID to use if the user is not in the server")
    @app_commands.choices(source=SOURCE_CHOICES)
    async def info(self, interaction: discord.Interaction, source: Optional[app_commands.Choice[str]] = None,
                   channel: Optional[discord.TextChannel] = None, user: Optional[discord.User] = None,
                   user_id: Optional[str] = None):
        """View statistics about available message data."""
        await interaction.response.defer()
        corpus_filter = build_filter(interaction.guild_id, source.value if source else None,
                                     channel.id if channel else None, self._author_id(user, user_id))
        reporter = InteractionProgress(interaction)
        started = time.perf_counter()

        async def on_progress(event, data):
            await reporter.update(render_step_progress("Gathering statistics", data))

        try:
            stats = await self.bridge.stats(corpus_filter, on_progress=on_progress)
        except MarkovError as e:
            logging.warning(f"Failed to get Markov info: {e}")
            await reporter.finish(describe_error(e))
            return

        elapsed_ms = (time.perf_counter() - started) * 1000
        embed = build_stats_embed(stats, describe_filter(corpus_filter, channel, user), elapsed_ms)
        await reporter.finish(content=None, embed=embed)
        self.bot.increment_command_count()

    @markov.command(name="collect")
    @app_commands.describe(channel="Channel to collect messages from", user="Only collect messages from this user",
                           user_id="User ID to use if the user is not in the server",
                           limit="Maximum number of messages to collect (default: 1000)",
                           entire_channel="Collect every message from the channel (ignores limit)")
    async def collect(self, interaction: discord.Interaction, channel: discord.TextChannel,
                      user: Optional[discord.User] = None, user_id: Optional[str] = None,
                      limit: Optional[app_commands.Range[int, 1, 1000000]] = None, entire_channel: bool = False):
        """Gather messages to train the Markov chain."""
        await interaction.response.defer()
        author_id = self._author_id(user, user_id)
        target = f"{channel.mention}{f' by <@{author_id}>' if author_id else ''}"
        reporter = InteractionProgress(interaction)
        progress_state = {"new_only": False}

        async def on_progress(event, data):
            if event == "collectComplete":
                progress_state["new_only"] = data.get("new_messages_only", False)
                progress_state["total_message_count"] = data.get("total_message_count")
                return
            await reporter.update(render_collect_progress(data, target))

        await reporter.update(f"🔍 Starting to collect {'ALL' if entire_channel else limit or self.bot.default_collect_limit} "
                              f"messages from {target}...", force=True)
        try:
            count = await self.bridge.collect(
                channel.id, author_id=author_id,
                limit="entire" if entire_channel else (limit or self.bot.default_collect_limit),
                delay_ms=self.bot.collect_delay_ms, on_progress=on_progress,
            )
        except MarkovError as e:
            logging.warning(f"Failed to collect messages from {channel}: {e}")
            await reporter.finish(describe_error(e))
            return

        lines = [f"✅ Successfully collected {count} messages from {target}"]
        total_message_count = progress_state.get("total_message_count")
        if total_message_count and entire_channel:
            lines.append(f"📊 {count} valid messages out of {total_message_count} total messages in the channel "
                         f"({count / total_message_count * 100:.1f}%)")
        if progress_state["new_only"]:
            lines.append("📋 These were new messages since the previous collection.")
        elif entire_channel:
            lines.append("📋 The entire channel has been marked as fully collected.")
        await reporter.finish("\n".join(lines))
        self.bot.increment_command_count()

    @markov.command(name="collect_all")
    @app_commands.describe(user="Only collect messages from this user",
                           user_id="User ID to use if the user is not in the server",
                           limit="Maximum number of messages to collect per channel (default: 1000)",
                           entire_channel="Collect every message from every channel (ignores limit)")
    async def collect_all(self, interaction: discord.Interaction, user: Optional[discord.User] = None,
                          user_id: Optional[str] = None,
                          limit: Optional[app_commands.Range[int, 1, 1000000]] = None,
                          entire_channel: bool = False):
        """Collect messages from every text channel and thread in the server."""
        if self.collect_all_running:
            await interaction.response.send_message("A server-wide collection is already running.", ephemeral=True)
            return

        self.collect_all_running = True
        try:
            await interaction.response.defer()
            guild = interaction.guild
            targets = [
                c for c in list(guild.text_channels) + list(guild.threads)
                if c.permissions_for(guild.me).read_message_history
            ]
            logging.info(f"collect_all: {len(targets)} collection targets in {guild.name}")
            reporter = InteractionProgress(interaction)
            await reporter.update(f"📡 Starting collection from **{len(targets)} channels and threads**... "
                                  f"This may take a while.", force=True)

            collected_total = 0
            failed = 0
            author_id = self._author_id(user, user_id)
            for target in targets:
                try:
                    count = await self.bridge.collect(
                        target.id, author_id=author_id,
                        limit="entire" if entire_channel else (limit or self.bot.default_collect_limit),
                        delay_ms=self.bot.collect_delay_ms, use_count_oracle=False,
                    )
                    collected_total += count
                    status = f"Processed #{target.name}"
                except MarkovError as e:
                    failed += 1
                    logging.warning(f"Failed to collect from #{target.name}: {e}")
                    status = f"Error processing #{target.name}"
                await reporter.update(f"📡 Collecting from {len(targets)} channels/threads... {status}. "
                                      f"Total collected so far: {collected_total}. Failures: {failed}.")

            await reporter.finish(f"✅ Finished collecting from all {len(targets)} channels and threads. "
                                  f"Total messages collected: {collected_total}. Failed channels: {failed}.")
            self.bot.increment_command_count()
        finally:
            self.collect_all_running = False


async def setup(bot):
    await bot.add_cog(MarkovCog(bot))
