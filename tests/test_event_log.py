"""Tests for the event sink."""

import json

from core.entities import AIUsageEntry


class TestEventLog:
    """Tests for persisted events and AI usage."""

    async def test_event_is_persisted(self, event_log, database):
        await event_log.log_event("warn", "fetch", "Source slow", details={"ms": 900}, source_id="ai-blog")

        row = await database.fetchone("SELECT level, category, message, details, source_id FROM error_logs")
        assert row["level"] == "warn"
        assert row["message"] == "Source slow"
        assert json.loads(row["details"]) == {"ms": 900}
        assert row["source_id"] == "ai-blog"

    async def test_sink_failure_is_swallowed(self, event_log, database):
        await database.execute("DROP TABLE error_logs")
        await event_log.log_event("error", "digest", "Still fine")

    async def test_ai_usage_batch(self, event_log, database):
        await event_log.record_ai_usage([
            AIUsageEntry(model="m", provider="gemini", status="rate_limited", error="quota"),
            AIUsageEntry(model="m2", provider="anthropic", status="success", input_tokens=10,
                         output_tokens=5, total_tokens=15, was_fallback=True),
        ])

        rows = await database.fetchall("SELECT provider, status, was_fallback FROM ai_usage ORDER BY provider")
        assert [tuple(row) for row in rows] == [("anthropic", "success", 1), ("gemini", "rate_limited", 0)]
