import aiosqlite
import asyncio
import logging
from typing import AsyncContextManager
from contextlib import asynccontextmanager
import os

from .database_schema import DEFAULT_CORPUS_DB_PATH, get_corpus_db_dir


class DatabasePool:
    """
    A simple database connection pool for SQLite using aiosqlite.
    Owned by whoever constructs it; there is no module-level instance.
    """

    def __init__(self, db_path: str = DEFAULT_CORPUS_DB_PATH, pool_size: int = 5):
        self.db_path = db_path
        self.pool_size = pool_size
        self._pool: asyncio.Queue = asyncio.Queue(maxsize=pool_size)
        self._total_connections = 0
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self):
        """Initialize the connection pool with pre-created connections."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:  # Double-check locking
                return

            db_dir = get_corpus_db_dir(self.db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

            for _ in range(self.pool_size):
                conn = await self._create_connection()
                await self._pool.put(conn)
                self._total_connections += 1

            self._initialized = True
            logging.info(f"Database pool for {self.db_path} initialized with {self.pool_size} connections")

    async def _create_connection(self) -> aiosqlite.Connection:
        """Create a new database connection with WAL, busy timeout and foreign keys."""
        conn = await aiosqlite.connect(self.db_path)
        await conn.execute('PRAGMA journal_mode=WAL')
        await conn.execute('PRAGMA busy_timeout=30000')
        await conn.execute('PRAGMA foreign_keys=ON')
        await conn.commit()
        return conn

    @asynccontextmanager
    async def get_connection(self) -> AsyncContextManager[aiosqlite.Connection]:
        """
        Get a database connection from the pool.
        Automatically returns the connection to the pool when done.
        """
        if not self._initialized:
            await self.initialize()

        try:
            conn = self._pool.get_nowait()
        except asyncio.QueueEmpty:
            logging.warning("Connection pool exhausted, creating temporary connection")
            conn = await self._create_connection()
            temp_connection = True
        else:
            temp_connection = False

        try:
            yield conn
        except Exception as e:
            logging.error(f"Database operation error: {e}")
            raise
        finally:
            if temp_connection:
                await conn.close()
            else:
                try:
                    self._pool.put_nowait(conn)
                except asyncio.QueueFull:
                    await conn.close()
                    logging.error("Connection pool full when returning connection")

    @asynccontextmanager
    async def transaction(self) -> AsyncContextManager[aiosqlite.Connection]:
        """Connection whose writes are committed together or rolled back on error."""
        async with self.get_connection() as conn:
            try:
                yield conn
            except Exception:
                await conn.rollback()
                raise
            else:
                await conn.commit()

    async def execute_script(self, script: str):
        async with self.get_connection() as conn:
            await conn.executescript(script)
            await conn.commit()

    async def execute_query(self, query: str, params=None):
        """Execute a query and return results."""
        async with self.get_connection() as conn:
            async with conn.execute(query, params or ()) as cursor:
                return await cursor.fetchall()

    async def execute_single(self, query: str, params=None):
        """Execute a query and return a single result."""
        async with self.get_connection() as conn:
            async with conn.execute(query, params or ()) as cursor:
                return await cursor.fetchone()

    async def close_all(self):
        """Close all connections in the pool."""
        while not self._pool.empty():
            try:
                conn = self._pool.get_nowait()
                await conn.close()
            except asyncio.QueueEmpty:
                break

        self._total_connections = 0
        self._initialized = False
        logging.info("Database pool closed")
