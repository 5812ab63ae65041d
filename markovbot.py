import asyncio
import logging
import signal

import discord
from discord.ext import commands

from modules import config
from modules.markov import EngineBridge
from web.dashboard import create_app, increment_command_count

# Set up logging
logging.basicConfig(level=logging.INFO, handlers=[logging.StreamHandler()])


class MarkovBot(commands.Bot):
    def __init__(self, *args, bridge: EngineBridge = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.markov_bridge = bridge or EngineBridge()
        self.collect_delay_ms = config.collect_delay_ms
        self.default_collect_limit = config.default_collect_limit
        self.commands_executed = 0
        self.hypercorn_task = None

    async def setup_hook(self):
        # The worker opens its own Discord session and corpus store
        await self.markov_bridge.initialize(config.engine_credentials())

        await self.load_extension("modules.cogs.markov_cog")
        await self.tree.sync()
        logging.info("Loaded all command modules.")

        self.hypercorn_task = self.loop.create_task(self.run_dashboard())

    def increment_command_count(self):
        self.commands_executed += 1
        increment_command_count()

    async def on_ready(self):
        logging.info(f'Logged in as {self.user}')

    async def run_dashboard(self):
        """Run the Quart status server using Hypercorn."""
        from hypercorn.asyncio import serve
        from hypercorn.config import Config

        hypercorn_config = Config()
        hypercorn_config.bind = [f"0.0.0.0:{config.dashboard_port}"]
        hypercorn_config.use_reloader = False
        await serve(create_app(self.markov_bridge), hypercorn_config)

    async def close(self):
        if self.hypercorn_task is not None:
            self.hypercorn_task.cancel()
            try:
                await self.hypercorn_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logging.error(f"Error shutting down dashboard server: {e}")
        try:
            await self.markov_bridge.close()
        except Exception as e:
            logging.error(f"Error closing Markov engine: {e}")
        await super().close()


intents = discord.Intents.default()
intents.message_content = True

bot = MarkovBot(command_prefix='!', intents=intents)


def signal_handler(sig, frame):
    bot.loop.create_task(bot.close())


async def main():
    """Main function with Discord connection retry logic."""
    max_retries = 5
    retry_delay = 10  # seconds

    for attempt in range(max_retries):
        try:
            async with bot:
                await bot.start(config.token)
            break

        except discord.errors.DiscordServerError as e:
            if attempt < max_retries - 1:
                logging.warning(f"Discord API unavailable (attempt {attempt + 1}/{max_retries}). Retrying in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
                retry_delay *= 2
            else:
                logging.error("Failed to connect to Discord after all retry attempts. Discord API may be down.")
                raise

        except discord.errors.HTTPException as e:
            if attempt < max_retries - 1:
                logging.warning(f"HTTP error connecting to Discord (attempt {attempt + 1}/{max_retries}): {e}")
                await asyncio.sleep(retry_delay)
                retry_delay *= 2
            else:
                logging.error("Failed to connect to Discord due to HTTP errors.")
                raise


if __name__ == "__main__":
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Shutting down...")
    except Exception as e:
        logging.error(f"Failed to start bot: {e}")
