"""
Accumulation store: raw items staged across the day's fetch passes before summarization.

Rows are unique on (source_id, link) and never deleted; only summarized_at changes.
"""
import logging
import time
import uuid
from datetime import date as date_type, timedelta
from typing import List, Optional, Sequence

from ingestion.base import RawItem
from services.database import Database
from services.event_log import EventLog

logger = logging.getLogger(__name__)

_SELECT_COLUMNS = "id, source_id, title, link, comments_url, content, published_at"


def previous_day(date: str) -> str:
    return (date_type.fromisoformat(date) - timedelta(days=1)).isoformat()


def _row_to_item(row) -> RawItem:
    return RawItem(
        id=row["id"],
        source_id=row["source_id"],
        title=row["title"] or "Untitled",
        link=row["link"] or "",
        comments_url=row["comments_url"],
        content=row["content"],
        published_at=row["published_at"],
    )


class AccumulationStore:
    def __init__(self, database: Database, event_log: Optional[EventLog] = None):
        self.db = database
        self.event_log = event_log

    async def store_raw_items(self, items: Sequence[RawItem], date: str) -> int:
        """
        Insert-or-ignore items for the ingestion date.

        Returns:
            Number of rows actually inserted
        """
        if not items:
            return 0

        fetched_at = int(time.time())
        statements = [
            (
                f"""
                INSERT OR IGNORE INTO raw_items
                ({_SELECT_COLUMNS}, fetched_at, date)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(uuid.uuid4()),
                    item.source_id,
                    item.title,
                    item.link,
                    item.comments_url,
                    item.content,
                    item.published_at,
                    fetched_at,
                    date,
                ),
            )
            for item in items
        ]

        try:
            inserted = await self.db.batch(statements)
        except Exception as e:
            logger.exception(f"Failed to store {len(items)} raw items for {date}")
            if self.event_log:
                await self.event_log.log_event("error", "fetch", f"Raw item store failed: {e}")
            return 0

        await self._verify_written(len(items), date)
        logger.info(f"Stored {inserted} new raw items for {date} ({len(items) - inserted} already present)")
        return inserted

    async def _verify_written(self, fetched: int, date: str) -> None:
        """A non-empty fetch must leave at least one row for the date."""
        row = await self.db.fetchone("SELECT COUNT(*) AS n FROM raw_items WHERE date = ?", (date,))
        if row["n"] == 0 and self.event_log:
            await self.event_log.log_event(
                "error",
                "fetch",
                f"Fetched {fetched} items but raw_items has no rows for {date}",
                details={"fetched": fetched, "date": date},
            )

    async def load_recent_raw_items(self, date: str) -> List[RawItem]:
        """Items accumulated on date and the calendar day before it."""
        rows = await self.db.fetchall(
            f"""
            SELECT {_SELECT_COLUMNS} FROM raw_items
            WHERE date IN (?, ?)
            ORDER BY fetched_at, rowid
            """,
            (date, previous_day(date)),
        )
        return [_row_to_item(row) for row in rows]

    async def load_unsummarized_raw_items(self, date: str) -> List[RawItem]:
        rows = await self.db.fetchall(
            f"""
            SELECT {_SELECT_COLUMNS} FROM raw_items
            WHERE date IN (?, ?) AND summarized_at IS NULL
            ORDER BY fetched_at, rowid
            """,
            (date, previous_day(date)),
        )
        return [_row_to_item(row) for row in rows]

    async def mark_summarized(self, ids: Sequence[str]) -> int:
        now = int(time.time())
        return await self.db.batch(
            ("UPDATE raw_items SET summarized_at = ? WHERE id = ?", (now, item_id))
            for item_id in ids
        )

    async def count_for_date(self, date: str) -> int:
        row = await self.db.fetchone("SELECT COUNT(*) AS n FROM raw_items WHERE date = ?", (date,))
        return row["n"]
