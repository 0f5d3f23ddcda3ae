"""Tests for the raw item accumulation store."""

from ingestion.base import RawItem
from services.accumulation import AccumulationStore, previous_day


def raw(n, source_id="ai-blog"):
    return RawItem(source_id=source_id, title=f"Item {n}", link=f"https://example.com/{n}")


class TestAccumulationStore:
    """Tests for storing and loading accumulated raw items."""

    def test_previous_day(self):
        assert previous_day("2026-03-01") == "2026-02-28"

    async def test_store_is_idempotent_on_source_and_link(self, database, event_log):
        store = AccumulationStore(database, event_log)

        assert await store.store_raw_items([raw(1), raw(2)], "2026-01-05") == 2
        assert await store.store_raw_items([raw(1), raw(2), raw(3)], "2026-01-05") == 1
        assert await store.count_for_date("2026-01-05") == 3

    async def test_same_link_from_another_source_is_distinct(self, database):
        store = AccumulationStore(database)
        await store.store_raw_items([raw(1, "a"), raw(1, "b")], "2026-01-05")
        assert await store.count_for_date("2026-01-05") == 2

    async def test_empty_store_is_a_noop(self, database):
        assert await AccumulationStore(database).store_raw_items([], "2026-01-05") == 0

    async def test_load_covers_date_and_previous_day(self, database):
        store = AccumulationStore(database)
        await store.store_raw_items([raw(1)], "2026-01-03")
        await store.store_raw_items([raw(2)], "2026-01-04")
        await store.store_raw_items([raw(3)], "2026-01-05")

        loaded = await store.load_recent_raw_items("2026-01-05")
        assert sorted(item.title for item in loaded) == ["Item 2", "Item 3"]

    async def test_unsummarized_excludes_marked_items(self, database):
        store = AccumulationStore(database)
        await store.store_raw_items([raw(1), raw(2)], "2026-01-05")
        first = (await store.load_recent_raw_items("2026-01-05"))[0]

        await store.mark_summarized([first.id])

        pending = await store.load_unsummarized_raw_items("2026-01-05")
        assert first.id not in {item.id for item in pending}
        assert len(pending) == 1
        assert len(await store.load_recent_raw_items("2026-01-05")) == 2

    async def test_store_failure_returns_zero_and_records_event(self, database, event_log):
        store = AccumulationStore(database, event_log)
        await database.execute("DROP TABLE raw_items")

        assert await store.store_raw_items([raw(1)], "2026-01-05") == 0

        rows = await database.fetchall("SELECT category, level FROM error_logs")
        assert [(row["category"], row["level"]) for row in rows] == [("fetch", "error")]
