"""
Fixed-window request limiter for the assistant, keyed by device fingerprint.
"""
import logging
import time
import uuid
from typing import Tuple

from services.database import Database

logger = logging.getLogger(__name__)

DAILY_LIMIT = 5
WINDOW_SECONDS = 24 * 60 * 60


class RateLimiter:
    def __init__(self, database: Database, limit: int = DAILY_LIMIT, window_seconds: int = WINDOW_SECONDS):
        self.db = database
        self.limit = limit
        self.window_seconds = window_seconds

    async def check_and_record(self, fingerprint: str) -> Tuple[bool, int]:
        """
        Prune expired rows, count the window and record the request when allowed.
        Check and insert run in one BEGIN IMMEDIATE transaction, which serializes
        concurrent callers across connections.

        Returns:
            (allowed, remaining requests after this one)
        """
        now = int(time.time())
        cutoff = now - self.window_seconds

        async with self.db.connect() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                await conn.execute("DELETE FROM ai_rate_limits WHERE created_at <= ?", (cutoff,))
                cursor = await conn.execute(
                    "SELECT COUNT(*) FROM ai_rate_limits WHERE fingerprint = ? AND created_at > ?",
                    (fingerprint, cutoff),
                )
                count = (await cursor.fetchone())[0]

                if count >= self.limit:
                    await conn.commit()
                    logger.info(f"Rate limit reached for fingerprint {fingerprint[:8]}")
                    return False, 0

                await conn.execute(
                    "INSERT INTO ai_rate_limits (id, fingerprint, created_at) VALUES (?, ?, ?)",
                    (str(uuid.uuid4()), fingerprint, now),
                )
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

        return True, self.limit - count - 1

    async def remaining(self, fingerprint: str) -> int:
        cutoff = int(time.time()) - self.window_seconds
        row = await self.db.fetchone(
            "SELECT COUNT(*) AS n FROM ai_rate_limits WHERE fingerprint = ? AND created_at > ?",
            (fingerprint, cutoff),
        )
        return max(0, self.limit - row["n"])
