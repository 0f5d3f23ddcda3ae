"""
EventLog - side-channel sink for pipeline events and AI usage records.

Every event is mirrored to the standard logger and persisted best-effort to
the error_logs table. A failing write is logged here and never reaches the caller.
"""
import json
import logging
import uuid
from typing import Any, Dict, Iterable, Optional

from core.entities import AIUsageEntry
from services.database import Database

logger = logging.getLogger(__name__)

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class EventLog:
    def __init__(self, database: Database):
        self.db = database

    async def log_event(
        self,
        level: str,
        category: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        source_id: Optional[str] = None,
        digest_id: Optional[str] = None,
    ) -> None:
        """
        Record one event.

        Args:
            level: debug, info, warn or error
            category: Pipeline area, e.g. fetch, ai, digest, comments
            message: Human readable message
            details: Extra JSON-serializable context
        """
        logger.log(
            LEVELS.get(level, logging.INFO),
            message,
            extra={
                "category": category,
                "source_id": source_id,
                "digest_id": digest_id,
                "details": details,
            },
        )

        try:
            await self.db.execute(
                """
                INSERT INTO error_logs (id, level, category, message, details, source_id, digest_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(uuid.uuid4()),
                    level,
                    category,
                    message,
                    json.dumps(details, default=str) if details is not None else None,
                    source_id,
                    digest_id,
                ),
            )
        except Exception as e:
            logger.error(f"Failed to persist event '{message}': {e}")

    async def record_ai_usage(self, entries: Iterable[AIUsageEntry]) -> None:
        """Append AI usage entries. Errors are logged, not raised."""
        statements = [
            (
                """
                INSERT INTO ai_usage
                (id, model, provider, input_tokens, output_tokens, total_tokens,
                 latency_ms, was_fallback, error, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(uuid.uuid4()),
                    entry.model,
                    entry.provider,
                    entry.input_tokens,
                    entry.output_tokens,
                    entry.total_tokens,
                    entry.latency_ms,
                    int(entry.was_fallback),
                    entry.error,
                    entry.status,
                ),
            )
            for entry in entries
        ]
        if not statements:
            return

        try:
            await self.db.batch(statements)
        except Exception as e:
            logger.error(f"Failed to record {len(statements)} AI usage entries: {e}")
