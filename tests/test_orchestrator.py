"""Tests for concurrent fetching, failure isolation and the freshness filter."""

import httpx

from conftest import make_config, mock_client, rfc822_now, rss_feed
from ingestion.base import RawItem
from ingestion.orchestrator import DAY_MS, fetch_all, filter_fresh
from services.config import SourceConfig

NOW_MS = 1_767_600_000_000


def raw(source_id, age_days=None):
    published = None if age_days is None else NOW_MS - int(age_days * DAY_MS)
    return RawItem(source_id=source_id, title="t", link=f"https://example.com/{source_id}/{age_days}",
                   published_at=published)


class TestFilterFresh:
    """Tests for category freshness thresholds."""

    def setup_method(self):
        self.config = make_config(sources=[
            SourceConfig(id="ai-src", name="AI", type="rss", url="https://a.example", category="ai"),
            SourceConfig(id="dev-src", name="Dev", type="rss", url="https://d.example", category="dev"),
        ])

    def test_category_threshold_applies(self):
        items = [raw("ai-src", 1), raw("ai-src", 3), raw("dev-src", 3), raw("dev-src", 8)]
        fresh = filter_fresh(items, self.config, now_ms=NOW_MS)
        assert [(i.source_id, i.published_at) for i in fresh] == [
            ("ai-src", NOW_MS - DAY_MS),
            ("dev-src", NOW_MS - 3 * DAY_MS),
        ]

    def test_exact_threshold_is_kept(self):
        assert len(filter_fresh([raw("ai-src", 2)], self.config, now_ms=NOW_MS)) == 1

    def test_undated_items_are_kept(self):
        assert len(filter_fresh([raw("ai-src")], self.config, now_ms=NOW_MS)) == 1

    def test_unknown_source_uses_default_threshold(self):
        items = [raw("mystery", 10), raw("mystery", 20)]
        fresh = filter_fresh(items, self.config, now_ms=NOW_MS)
        assert len(fresh) == 1
        assert fresh[0].published_at == NOW_MS - 10 * DAY_MS


class TestFetchAll:
    """Tests for the concurrent fetch of every source."""

    async def test_failing_source_does_not_affect_others(self):
        sources = [
            SourceConfig(id="good", name="Good", type="rss", url="https://good.example/feed", category="ai"),
            SourceConfig(id="bad", name="Bad", type="rss", url="https://bad.example/feed", category="ai"),
        ]
        body = rss_feed([{"title": "Fresh", "link": "https://good.example/1", "pubDate": rfc822_now()}])

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "bad.example":
                return httpx.Response(500)
            return httpx.Response(200, text=body)

        async with mock_client(handler) as client:
            result = await fetch_all(sources, make_config(sources=sources), client=client)

        assert [item.link for item in result.items] == ["https://good.example/1"]
        health = {h.source_id: h for h in result.health}
        assert health["good"].success and health["good"].item_count == 1
        assert not health["bad"].success
        assert "500" in health["bad"].error
        assert result.sources_ok == 1

    async def test_upstream_error_from_thread_search_is_contained(self):
        sources = [
            SourceConfig(id="hn-hiring", name="HN Hiring", type="api",
                         url="https://hn.algolia.com/api/v1/search_by_date", category="jobs"),
        ]
        async with mock_client(lambda request: httpx.Response(503)) as client:
            result = await fetch_all(sources, make_config(sources=sources), client=client)

        assert result.items == []
        assert len(result.health) == 1
        assert not result.health[0].success
        assert result.health[0].error

    async def test_unknown_source_type_is_a_failed_result(self):
        sources = [SourceConfig(id="odd", name="Odd", type="fax", url="https://odd.example", category="dev")]
        async with mock_client(lambda request: httpx.Response(200)) as client:
            result = await fetch_all(sources, make_config(sources=sources), client=client)

        assert not result.health[0].success
        assert "fax" in result.health[0].error

    async def test_stale_items_are_dropped(self):
        sources = [SourceConfig(id="ai", name="AI", type="rss", url="https://ai.example/feed", category="ai")]
        body = rss_feed([
            {"title": "New", "link": "https://ai.example/new", "pubDate": rfc822_now()},
            {"title": "Old", "link": "https://ai.example/old", "pubDate": "Mon, 06 Jan 2020 10:00:00 GMT"},
        ])
        async with mock_client(lambda request: httpx.Response(200, text=body)) as client:
            result = await fetch_all(sources, make_config(sources=sources), client=client)

        assert [item.title for item in result.items] == ["New"]
        assert result.health[0].item_count == 2
