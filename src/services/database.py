import aiosqlite
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Sequence, Tuple
import logging
import os

logger = logging.getLogger(__name__)

# Statements per transaction for batched writes
MAX_BATCH_STATEMENTS = 100

Statement = Tuple[str, Sequence]

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS digests (
        id TEXT PRIMARY KEY,
        date TEXT NOT NULL UNIQUE,
        item_count INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS items (
        id TEXT PRIMARY KEY,
        digest_id TEXT NOT NULL REFERENCES digests(id) ON DELETE CASCADE,
        category TEXT NOT NULL,
        title TEXT NOT NULL,
        summary TEXT NOT NULL,
        why_it_matters TEXT,
        source_name TEXT NOT NULL,
        source_url TEXT NOT NULL,
        source_id TEXT,
        comments_url TEXT,
        published_at INTEGER,
        position INTEGER NOT NULL,
        comment_summary TEXT,
        comment_count INTEGER,
        comment_score INTEGER,
        comment_summary_source TEXT,
        comment_attempts INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS raw_items (
        id TEXT PRIMARY KEY,
        source_id TEXT NOT NULL,
        title TEXT,
        link TEXT,
        comments_url TEXT,
        content TEXT,
        published_at INTEGER,
        fetched_at INTEGER DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)),
        date TEXT,
        summarized_at INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS source_health (
        source_id TEXT PRIMARY KEY,
        last_success_at INTEGER,
        last_error_at INTEGER,
        last_error TEXT,
        item_count INTEGER DEFAULT 0,
        consecutive_failures INTEGER DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ai_usage (
        id TEXT PRIMARY KEY,
        model TEXT NOT NULL,
        provider TEXT NOT NULL,
        input_tokens INTEGER,
        output_tokens INTEGER,
        total_tokens INTEGER,
        latency_ms INTEGER,
        was_fallback INTEGER DEFAULT 0,
        error TEXT,
        status TEXT NOT NULL,
        created_at INTEGER DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS error_logs (
        id TEXT PRIMARY KEY,
        level TEXT NOT NULL,
        category TEXT NOT NULL,
        message TEXT NOT NULL,
        details TEXT,
        source_id TEXT,
        digest_id TEXT,
        created_at INTEGER DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ai_rate_limits (
        id TEXT PRIMARY KEY,
        fingerprint TEXT NOT NULL,
        created_at INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_items_digest ON items(digest_id)",
    "CREATE INDEX IF NOT EXISTS idx_raw_items_date ON raw_items(date)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_raw_items_source_link ON raw_items(source_id, link)",
    "CREATE INDEX IF NOT EXISTS idx_ai_usage_created ON ai_usage(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_error_logs_created ON error_logs(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_rate_limits_fingerprint ON ai_rate_limits(fingerprint, created_at)",
)


class Database:
    def __init__(self, path: str):
        self.path = path

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await aiosqlite.connect(self.path)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA foreign_keys=ON;")
        try:
            yield conn
        finally:
            await conn.close()

    async def execute(self, query: str, params: Sequence = ()) -> int:
        """Run a single write statement, returning the affected row count."""
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def fetchone(self, query: str, params: Sequence = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()

    async def fetchall(self, query: str, params: Sequence = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

    async def batch(self, statements: Iterable[Statement]) -> int:
        """
        Run statements in transactions of at most MAX_BATCH_STATEMENTS.
        Each chunk commits or rolls back as a unit.

        Returns:
            Total number of rows changed
        """
        statements = list(statements)
        changed = 0
        async with self.connect() as conn:
            for start in range(0, len(statements), MAX_BATCH_STATEMENTS):
                chunk = statements[start:start + MAX_BATCH_STATEMENTS]
                try:
                    for query, params in chunk:
                        cursor = await conn.execute(query, params)
                        changed += max(cursor.rowcount, 0)
                    await conn.commit()
                except Exception:
                    await conn.rollback()
                    raise
        return changed

    async def init_tables(self) -> None:
        """Create all tables and indexes if they do not exist."""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        async with self.connect() as conn:
            for statement in SCHEMA:
                await conn.execute(statement)
            await conn.commit()
            logger.info("Database tables initialized")


def rows_to_dicts(rows: List[aiosqlite.Row]) -> List[dict]:
    return [dict(row) for row in rows]
