import os
import logging
from dotenv import load_dotenv

from modules.markov.engine import EngineCredentials
from database_modules.database_schema import DEFAULT_CORPUS_DB_PATH

load_dotenv('id.env')

token = os.getenv("DISCORD_BOT_TOKEN")
if not token:
    raise ValueError("DISCORD_BOT_TOKEN is not set in the environment variables")

# Optional: enables the total-message-count lookup used for collection ETAs
user_token = os.getenv("DISCORD_USER_TOKEN")
if not user_token:
    logging.info("DISCORD_USER_TOKEN not set, collection progress will be indeterminate for whole channels")

db_path = os.getenv("MARKOV_DB_PATH", DEFAULT_CORPUS_DB_PATH)
collect_delay_ms = int(os.getenv("MARKOV_COLLECT_DELAY_MS", "1000"))
default_collect_limit = int(os.getenv("MARKOV_DEFAULT_LIMIT", "1000"))
dashboard_port = int(os.getenv("DASHBOARD_PORT", "5001"))

if collect_delay_ms < 0:
    raise ValueError("MARKOV_COLLECT_DELAY_MS must not be negative")
if default_collect_limit < 1:
    raise ValueError("MARKOV_DEFAULT_LIMIT must be at least 1")

logging.info("Environment variables validated successfully")


def engine_credentials() -> EngineCredentials:
    """Credentials handed to the engine worker."""
    return EngineCredentials(token=token, user_token=user_token, db_path=db_path)
