"""
DigestStore - persistence for digests, digest items and source health.

Positions are dense and 0-based within a digest and assigned here, at write time.
"""
import logging
import time
from datetime import date as date_type, timedelta
from typing import Any, Dict, List, Optional, Sequence

from core.entities import Digest, DigestItem, SourceHealthRecord, digest_id_for
from ingestion.base import SourceFetchResult
from services.database import Database, rows_to_dicts

logger = logging.getLogger(__name__)

ITEM_COLUMNS = (
    "id", "digest_id", "category", "title", "summary", "why_it_matters",
    "source_name", "source_url", "source_id", "comments_url", "published_at",
    "position", "comment_summary", "comment_count", "comment_score",
    "comment_summary_source",
)

_INSERT_ITEM = (
    f"INSERT INTO items ({', '.join(ITEM_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in ITEM_COLUMNS)})"
)

_SYNC_COUNT = (
    "UPDATE digests SET item_count = (SELECT COUNT(*) FROM items WHERE digest_id = ?) "
    "WHERE id = ?"
)


def _row_to_item(row) -> DigestItem:
    return DigestItem(**{column: row[column] for column in ITEM_COLUMNS})


def _item_params(item: DigestItem, digest_id: str, position: int) -> tuple:
    item.digest_id = digest_id
    item.position = position
    item.id = f"{digest_id}-{position}"
    return tuple(getattr(item, column) for column in ITEM_COLUMNS)


class DigestStore:
    def __init__(self, database: Database):
        self.db = database

    async def digest_exists(self, date: str) -> bool:
        row = await self.db.fetchone("SELECT 1 FROM digests WHERE date = ?", (date,))
        return row is not None

    async def get_digest(self, date: str) -> Optional[Digest]:
        row = await self.db.fetchone("SELECT id, date, item_count FROM digests WHERE date = ?", (date,))
        if row is None:
            return None

        item_rows = await self.db.fetchall(
            f"SELECT {', '.join(ITEM_COLUMNS)} FROM items WHERE digest_id = ? ORDER BY position",
            (row["id"],),
        )
        return Digest(
            id=row["id"],
            date=row["date"],
            item_count=row["item_count"],
            items=[_row_to_item(item_row) for item_row in item_rows],
        )

    async def list_digests(self, limit: int = 30) -> List[Dict[str, Any]]:
        rows = await self.db.fetchall(
            "SELECT date, item_count FROM digests ORDER BY date DESC LIMIT ?",
            (limit,),
        )
        return rows_to_dicts(rows)

    async def save_digest(self, date: str, items: Sequence[DigestItem]) -> Digest:
        """Create the digest for date with items at positions 0..n-1."""
        digest_id = digest_id_for(date)
        statements = [
            ("INSERT INTO digests (id, date, item_count) VALUES (?, ?, ?)", (digest_id, date, len(items))),
        ]
        statements.extend(
            (_INSERT_ITEM, _item_params(item, digest_id, position))
            for position, item in enumerate(items)
        )
        await self.db.batch(statements)

        logger.info(f"Saved digest {digest_id} with {len(items)} items", extra={"digest_id": digest_id})
        return Digest(id=digest_id, date=date, item_count=len(items), items=list(items))

    async def append_items(self, date: str, items: Sequence[DigestItem]) -> Digest:
        """
        Append items after the current last position, creating the digest if absent.
        """
        digest_id = digest_id_for(date)
        if not await self.digest_exists(date):
            return await self.save_digest(date, items)

        row = await self.db.fetchone(
            "SELECT COALESCE(MAX(position), -1) AS last FROM items WHERE digest_id = ?",
            (digest_id,),
        )
        start = row["last"] + 1

        statements = [
            (_INSERT_ITEM, _item_params(item, digest_id, start + offset))
            for offset, item in enumerate(items)
        ]
        statements.append((_SYNC_COUNT, (digest_id, digest_id)))
        await self.db.batch(statements)

        logger.info(
            f"Appended {len(items)} items to {digest_id} at position {start}",
            extra={"digest_id": digest_id},
        )
        return await self.get_digest(date)

    async def delete_digest(self, date: str) -> None:
        digest_id = digest_id_for(date)
        await self.db.batch([
            ("DELETE FROM items WHERE digest_id = ?", (digest_id,)),
            ("DELETE FROM digests WHERE id = ?", (digest_id,)),
        ])
        logger.info(f"Deleted digest {digest_id}", extra={"digest_id": digest_id})

    async def recent_digest_items(self, date: str, days: int) -> List[DigestItem]:
        """Items of digests dated within `days` days up to and including date."""
        cutoff = (date_type.fromisoformat(date) - timedelta(days=days)).isoformat()
        rows = await self.db.fetchall(
            f"""
            SELECT {', '.join('i.' + column for column in ITEM_COLUMNS)}
            FROM items i JOIN digests d ON i.digest_id = d.id
            WHERE d.date >= ? AND d.date <= ?
            """,
            (cutoff, date),
        )
        return [_row_to_item(row) for row in rows]

    async def items_pending_enrichment(self, date: str, limit: Optional[int] = None) -> List[DigestItem]:
        query = (
            f"SELECT {', '.join(ITEM_COLUMNS)} FROM items "
            "WHERE digest_id = ? AND comment_summary_source IS NULL "
            "ORDER BY comment_attempts, position"
        )
        params: tuple = (digest_id_for(date),)
        if limit is not None:
            query += " LIMIT ?"
            params += (limit,)
        rows = await self.db.fetchall(query, params)
        return [_row_to_item(row) for row in rows]

    async def update_comment_fields(self, items: Sequence[DigestItem]) -> int:
        return await self.db.batch(
            (
                """
                UPDATE items SET comment_summary = ?, comment_count = ?,
                comment_score = ?, comment_summary_source = ?
                WHERE id = ?
                """,
                (
                    item.comment_summary,
                    item.comment_count,
                    item.comment_score,
                    item.comment_summary_source,
                    item.id,
                ),
            )
            for item in items
        )

    async def record_enrichment_attempts(self, item_ids: Sequence[str]) -> int:
        """Count a failed enrichment pass against each item so it yields to untried ones."""
        return await self.db.batch(
            ("UPDATE items SET comment_attempts = comment_attempts + 1 WHERE id = ?", (item_id,))
            for item_id in item_ids
        )

    async def record_source_health(self, results: Sequence[SourceFetchResult]) -> None:
        """Upsert one health row per fetch attempt; a success resets the failure streak."""
        now = int(time.time())
        statements = []
        for result in results:
            if result.success:
                statements.append((
                    """
                    INSERT INTO source_health (source_id, last_success_at, item_count, consecutive_failures)
                    VALUES (?, ?, ?, 0)
                    ON CONFLICT(source_id) DO UPDATE SET
                        last_success_at = excluded.last_success_at,
                        item_count = excluded.item_count,
                        consecutive_failures = 0
                    """,
                    (result.source_id, now, result.item_count),
                ))
            else:
                statements.append((
                    """
                    INSERT INTO source_health (source_id, last_error_at, last_error, consecutive_failures)
                    VALUES (?, ?, ?, 1)
                    ON CONFLICT(source_id) DO UPDATE SET
                        last_error_at = excluded.last_error_at,
                        last_error = excluded.last_error,
                        consecutive_failures = source_health.consecutive_failures + 1
                    """,
                    (result.source_id, now, result.error),
                ))

        try:
            await self.db.batch(statements)
        except Exception as e:
            logger.error(f"Failed to record source health: {e}")

    async def list_source_health(self) -> List[SourceHealthRecord]:
        rows = await self.db.fetchall(
            """
            SELECT source_id, last_success_at, last_error_at, last_error,
                   item_count, consecutive_failures
            FROM source_health ORDER BY last_success_at ASC
            """
        )
        return [SourceHealthRecord(**dict(row)) for row in rows]

    async def dashboard(self, limit: int = 50) -> Dict[str, Any]:
        """Recent AI usage, source health, recent warn/error events and running totals."""
        usage = await self.db.fetchall(
            "SELECT * FROM ai_usage ORDER BY created_at DESC LIMIT ?", (limit,)
        )
        sources = await self.db.fetchall(
            "SELECT * FROM source_health ORDER BY consecutive_failures DESC, source_id"
        )
        errors = await self.db.fetchall(
            "SELECT * FROM error_logs WHERE level IN ('warn', 'error') ORDER BY created_at DESC LIMIT ?",
            (limit,),
        )
        totals = await self.db.fetchone(
            """
            SELECT
                (SELECT COUNT(*) FROM digests) AS digests,
                (SELECT COUNT(*) FROM items) AS items,
                (SELECT COUNT(*) FROM raw_items) AS raw_items,
                (SELECT COALESCE(SUM(total_tokens), 0) FROM ai_usage) AS total_tokens,
                (SELECT COUNT(*) FROM ai_usage WHERE status = 'rate_limited') AS rate_limited_calls,
                (SELECT COUNT(*) FROM ai_usage WHERE was_fallback = 1) AS fallback_calls
            """
        )
        return {
            "ai_usage": rows_to_dicts(usage),
            "sources": rows_to_dicts(sources),
            "errors": rows_to_dicts(errors),
            "totals": dict(totals),
        }
