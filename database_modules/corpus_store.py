import logging
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from modules.markov.models import CollectionState, CorpusFilter, MessageRecord
from .database_pool import DatabasePool
from .database_schema import CORPUS_SCHEMA, DEFAULT_CORPUS_DB_PATH

INSERT_CHUNK_SIZE = 500


class CorpusStore:
    """
    Durable message corpus plus per-channel collection state.

    Writes are append-only: messages are inserted with INSERT OR IGNORE keyed
    on (channel_id, message_id), and the fully-collected flag only ever moves
    from 0 to 1.
    """

    def __init__(self, db_path: str = DEFAULT_CORPUS_DB_PATH, pool_size: int = 5):
        self.db_path = db_path
        self.pool = DatabasePool(db_path, pool_size=pool_size)

    async def initialize(self):
        if self.pool.initialized:
            return
        await self.pool.initialize()
        await self.pool.execute_script(CORPUS_SCHEMA)
        logging.info(f"Corpus store ready at {self.db_path}")

    async def close(self):
        await self.pool.close_all()

    async def add_messages(self, records: List[MessageRecord], guild_id: str,
                           fully_collected_channel_id: Optional[str] = None,
                           channel_name: Optional[str] = None) -> int:
        """Store records, skipping empty text and already-known ids. Returns rows inserted."""
        await self.initialize()
        now = datetime.now().isoformat()
        records = [record for record in records if record.has_text()]
        inserted = 0

        async with self.pool.transaction() as conn:
            await conn.execute(
                "INSERT OR IGNORE INTO guilds (guild_id, first_seen) VALUES (?, ?)",
                (str(guild_id), now)
            )

            channel_ids = {record.channel_id for record in records}
            if fully_collected_channel_id:
                channel_ids.add(str(fully_collected_channel_id))
            await conn.executemany('''
                INSERT INTO channels (channel_id, guild_id, channel_name, fully_collected, last_collected)
                VALUES (?, ?, ?, 0, ?)
                ON CONFLICT(channel_id) DO UPDATE SET
                    channel_name = COALESCE(excluded.channel_name, channels.channel_name),
                    last_collected = excluded.last_collected
            ''', [(channel_id, str(guild_id), channel_name, now) for channel_id in sorted(channel_ids)])

            for i in range(0, len(records), INSERT_CHUNK_SIZE):
                chunk = records[i:i + INSERT_CHUNK_SIZE]
                before = conn.total_changes
                await conn.executemany('''
                    INSERT OR IGNORE INTO messages
                        (channel_id, message_id, guild_id, author_id, text, timestamp)
                    VALUES (?, ?, ?, ?, ?, ?)
                ''', [_record_row(record) for record in chunk])
                inserted += conn.total_changes - before

            if fully_collected_channel_id:
                await conn.execute(
                    "UPDATE channels SET fully_collected = 1 WHERE channel_id = ?",
                    (str(fully_collected_channel_id),)
                )

        if fully_collected_channel_id:
            logging.info(f"Marked channel {fully_collected_channel_id} as fully collected")
        logging.info(f"Stored {inserted} of {len(records)} messages for guild {guild_id}")
        return inserted

    async def get_messages(self, corpus_filter: CorpusFilter) -> List[MessageRecord]:
        await self.initialize()
        where, params = _filter_clause(corpus_filter)
        rows = await self.pool.execute_query(f'''
            SELECT message_id, author_id, channel_id, guild_id, text, timestamp
            FROM messages{where}
            ORDER BY rowid
        ''', params)
        return [MessageRecord(*row) for row in rows]

    async def count_messages(self, corpus_filter: CorpusFilter) -> int:
        await self.initialize()
        where, params = _filter_clause(corpus_filter)
        row = await self.pool.execute_single(f"SELECT COUNT(*) FROM messages{where}", params)
        return row[0] if row else 0

    async def get_collection_state(self, guild_id: str, channel_id: str) -> CollectionState:
        await self.initialize()
        row = await self.pool.execute_single(
            "SELECT fully_collected FROM channels WHERE guild_id = ? AND channel_id = ?",
            (str(guild_id), str(channel_id))
        )
        return CollectionState(str(guild_id), str(channel_id), fully_collected=bool(row and row[0]))

    async def is_channel_fully_collected(self, guild_id: str, channel_id: str) -> bool:
        state = await self.get_collection_state(guild_id, channel_id)
        return state.fully_collected

    async def get_existing_message_ids(self, guild_id: str, channel_id: str) -> Set[str]:
        await self.initialize()
        rows = await self.pool.execute_query(
            "SELECT message_id FROM messages WHERE guild_id = ? AND channel_id = ?",
            (str(guild_id), str(channel_id))
        )
        return {row[0] for row in rows}


def _record_row(record: MessageRecord) -> Tuple:
    return (
        str(record.channel_id),
        str(record.message_id),
        str(record.guild_id),
        str(record.author_id),
        record.text,
        int(record.timestamp_millis),
    )


def _filter_clause(corpus_filter: CorpusFilter) -> Tuple[str, Iterable]:
    conditions = []
    params = []
    if not corpus_filter.global_scope:
        if corpus_filter.guild_id:
            conditions.append("guild_id = ?")
            params.append(corpus_filter.guild_id)
        if corpus_filter.channel_id:
            conditions.append("channel_id = ?")
            params.append(corpus_filter.channel_id)
    if corpus_filter.author_id:
        conditions.append("author_id = ?")
        params.append(corpus_filter.author_id)
    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, tuple(params)
