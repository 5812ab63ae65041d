# Markov corpus database schema definitions

import os

DEFAULT_CORPUS_DB_PATH = os.getenv("MARKOV_DB_PATH", "database/markov.sqlite")

CORPUS_SCHEMA = """
CREATE TABLE IF NOT EXISTS guilds (
    guild_id TEXT PRIMARY KEY,
    first_seen TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS channels (
    channel_id TEXT PRIMARY KEY,
    guild_id TEXT NOT NULL,
    channel_name TEXT,
    fully_collected INTEGER NOT NULL DEFAULT 0,
    last_collected TEXT,
    FOREIGN KEY (guild_id) REFERENCES guilds (guild_id)
);

CREATE TABLE IF NOT EXISTS messages (
    channel_id TEXT NOT NULL,
    message_id TEXT NOT NULL,
    guild_id TEXT NOT NULL,
    author_id TEXT NOT NULL,
    text TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    PRIMARY KEY (channel_id, message_id),
    FOREIGN KEY (channel_id) REFERENCES channels (channel_id)
);

CREATE INDEX IF NOT EXISTS idx_messages_guild
ON messages (guild_id, channel_id);

CREATE INDEX IF NOT EXISTS idx_messages_author
ON messages (author_id);

CREATE INDEX IF NOT EXISTS idx_channels_guild
ON channels (guild_id, fully_collected);
"""


def get_corpus_db_dir(db_path: str = DEFAULT_CORPUS_DB_PATH) -> str:
    """Directory holding the corpus database, empty for a bare filename"""
    return os.path.dirname(db_path)
