"""Tests for source adapters and the adapter registry."""

from datetime import datetime, timezone

import httpx
import pytest

from conftest import mock_client, rss_feed
from ingestion.arbeitnow import ArbeitnowAdapter
from ingestion.base import ITEM_LIMIT, parse_published_date, strip_html, truncate_title
from ingestion.bluesky import BlueskyAdapter, post_key
from ingestion.feed import FeedAdapter
from ingestion.himalayas import HimalayasAdapter
from ingestion.hn_hiring import HNHiringAdapter
from ingestion.jobicy import JobicyAdapter
from ingestion.remoteok import RemoteOKAdapter
from ingestion.scrape import ScrapeAdapter
from ingestion.source_factory import create_adapter, resolve_adapter_class
from services.config import SourceConfig


def source(id="test-source", type="rss", url="https://example.com/feed", category="dev", name="Test Source"):
    return SourceConfig(id=id, name=name, type=type, url=url, category=category)


def json_handler(payload, status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=payload)
    return handler


class TestHelpers:
    """Tests for the shared normalization helpers."""

    def test_strip_html_removes_tags_and_decodes_entities(self):
        assert strip_html("<p>Hello &amp; <b>world</b></p>\n\n  again") == "Hello & world again"

    def test_strip_html_handles_none(self):
        assert strip_html(None) == ""

    def test_parse_iso_date_to_ms(self):
        expected = int(datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)
        assert parse_published_date("2026-01-05T12:00:00Z") == expected

    def test_parse_rfc822_date_to_ms(self):
        expected = int(datetime(2025, 1, 6, 10, 0, tzinfo=timezone.utc).timestamp() * 1000)
        assert parse_published_date("Mon, 06 Jan 2025 10:00:00 GMT") == expected

    def test_invalid_date_is_none(self):
        assert parse_published_date("not a date") is None
        assert parse_published_date(None) is None

    def test_truncate_title_hard_cap(self):
        assert truncate_title("x" * 150) == "x" * 100

    def test_truncate_title_with_ellipsis(self):
        assert truncate_title("x" * 150, ellipsis=True) == "x" * 100 + "…"

    def test_short_title_untouched(self):
        assert truncate_title("short", ellipsis=True) == "short"


class TestFeedAdapter:
    """Tests for RSS/Atom ingestion."""

    async def test_normalizes_entries(self):
        body = rss_feed([
            {
                "title": "Vue 4 Released",
                "link": "https://vue.example.com/4",
                "description": "<![CDATA[<p>Hello &amp; <b>world</b></p>]]>",
                "comments": "https://news.ycombinator.com/item?id=42",
                "pubDate": "Mon, 06 Jan 2025 10:00:00 GMT",
            },
        ])
        async with mock_client(lambda request: httpx.Response(200, text=body)) as client:
            result = await FeedAdapter(client).fetch_items(source())

        assert result.success
        assert result.item_count == 1
        item = result.items[0]
        assert item.source_id == "test-source"
        assert item.title == "Vue 4 Released"
        assert item.link == "https://vue.example.com/4"
        assert item.content == "Hello & world"
        assert item.comments_url == "https://news.ycombinator.com/item?id=42"
        assert item.published_at == int(datetime(2025, 1, 6, 10, 0, tzinfo=timezone.utc).timestamp() * 1000)

    async def test_missing_title_becomes_untitled(self):
        body = rss_feed([{"title": "", "link": "https://example.com/a"}])
        async with mock_client(lambda request: httpx.Response(200, text=body)) as client:
            result = await FeedAdapter(client).fetch_items(source())

        assert result.items[0].title == "Untitled"
        assert result.items[0].published_at is None

    async def test_caps_at_item_limit(self):
        body = rss_feed([{"title": f"Post {i}", "link": f"https://example.com/{i}"} for i in range(25)])
        async with mock_client(lambda request: httpx.Response(200, text=body)) as client:
            result = await FeedAdapter(client).fetch_items(source())

        assert result.item_count == ITEM_LIMIT
        assert len(result.items) == ITEM_LIMIT

    async def test_http_error_is_a_failed_result(self):
        async with mock_client(lambda request: httpx.Response(503)) as client:
            result = await FeedAdapter(client).fetch_items(source())

        assert not result.success
        assert result.items == []
        assert "503" in result.error

    async def test_malformed_body_is_a_failed_result(self):
        async with mock_client(lambda request: httpx.Response(200, text="this is not a feed")) as client:
            result = await FeedAdapter(client).fetch_items(source())

        assert not result.success
        assert result.items == []
        assert result.error

    async def test_network_error_is_a_failed_result(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            result = await FeedAdapter(client).fetch_items(source())

        assert not result.success
        assert "connection refused" in result.error


class TestJobAdapters:
    """Tests for the JSON job board adapters."""

    async def test_jobicy(self):
        payload = {"jobs": [{
            "jobTitle": "Senior Vue Developer",
            "url": "https://jobicy.com/jobs/1",
            "jobDescription": "<p>Build &lt;things&gt;</p>",
            "pubDate": "2026-01-05T12:00:00Z",
        }]}
        async with mock_client(json_handler(payload)) as client:
            result = await JobicyAdapter(client).fetch_items(source(id="jobicy-vue-uk", type="api", category="jobs"))

        item = result.items[0]
        assert item.title == "Senior Vue Developer"
        assert item.link == "https://jobicy.com/jobs/1"
        assert item.content == "Build <things>"

    async def test_remoteok_skips_legal_notice_and_filters_tags(self):
        payload = [
            {"legal": "API terms"},
            {"position": "Vue Engineer", "company": "Acme", "url": "https://remoteok.com/1",
             "tags": ["Vue", "remote"], "epoch": 1700000000},
            {"position": "Go Engineer", "company": "Gopher", "url": "https://remoteok.com/2",
             "tags": ["golang"], "epoch": 1700000000},
        ]
        async with mock_client(json_handler(payload)) as client:
            result = await RemoteOKAdapter(client).fetch_items(source(id="remoteok", type="api", category="jobs"))

        assert [item.link for item in result.items] == ["https://remoteok.com/1"]
        assert result.items[0].title == "Vue Engineer — Acme"
        assert result.items[0].published_at == 1700000000000

    async def test_remoteok_filters_before_capping(self):
        irrelevant = [{"position": f"Rust {i}", "url": f"https://remoteok.com/r{i}", "tags": ["rust"]} for i in range(30)]
        relevant = [{"position": f"Vue {i}", "url": f"https://remoteok.com/v{i}", "tags": ["vue"]} for i in range(5)]
        payload = [{"legal": "notice"}] + irrelevant + relevant

        async with mock_client(json_handler(payload)) as client:
            result = await RemoteOKAdapter(client).fetch_items(source(id="remoteok", type="api", category="jobs"))

        assert len(result.items) == 5

    async def test_himalayas_epoch_seconds(self):
        payload = {"jobs": [{
            "title": "Frontend Lead",
            "companyName": "Peak",
            "applicationLink": "https://himalayas.app/jobs/1",
            "excerpt": "Lead the frontend",
            "pubDate": 1700000000,
        }]}
        async with mock_client(json_handler(payload)) as client:
            result = await HimalayasAdapter(client).fetch_items(source(id="himalayas", type="api", category="jobs"))

        item = result.items[0]
        assert item.title == "Frontend Lead — Peak"
        assert item.content == "Lead the frontend"
        assert item.published_at == 1700000000000

    async def test_arbeitnow_remote_keyword_match(self):
        payload = {"data": [
            {"title": "Vue.js Developer", "company_name": "A", "url": "https://a.example/1",
             "remote": True, "tags": [], "created_at": 1700000000},
            {"title": "Nuxt Developer", "company_name": "B", "url": "https://b.example/1",
             "remote": False, "tags": [], "created_at": 1700000000},
            {"title": "Revue Editor", "company_name": "C", "url": "https://c.example/1",
             "remote": True, "tags": ["editing"], "created_at": 1700000000},
            {"title": "Frontend Developer", "company_name": "D", "url": "https://d.example/1",
             "remote": True, "tags": ["Nuxt"], "created_at": 1700000000},
        ]}
        async with mock_client(json_handler(payload)) as client:
            result = await ArbeitnowAdapter(client).fetch_items(source(id="arbeitnow", type="api", category="jobs"))

        assert [item.link for item in result.items] == ["https://a.example/1", "https://d.example/1"]

    async def test_malformed_json_is_a_failed_result(self):
        async with mock_client(lambda request: httpx.Response(200, text="<html>oops</html>")) as client:
            result = await HimalayasAdapter(client).fetch_items(source(id="himalayas", type="api", category="jobs"))

        assert not result.success
        assert result.items == []


class TestBlueskyAdapter:
    """Tests for Bluesky author feeds."""

    def test_post_key_is_last_uri_segment(self):
        assert post_key("at://did:plc:abc/app.bsky.feed.post/3kxyz") == "3kxyz"

    async def test_resolves_handle_and_builds_links(self):
        text = "A" * 150

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("resolveHandle"):
                assert request.url.params["handle"] == "evanyou.me"
                return httpx.Response(200, json={"did": "did:plc:abc"})
            assert request.url.params["actor"] == "did:plc:abc"
            return httpx.Response(200, json={"feed": [{
                "post": {
                    "uri": "at://did:plc:abc/app.bsky.feed.post/3kxyz",
                    "record": {"text": text, "createdAt": "2026-01-05T12:00:00.000Z"},
                },
            }]})

        async with mock_client(handler) as client:
            result = await BlueskyAdapter(client).fetch_items(
                source(id="evan-you-bluesky", type="bluesky", url="evanyou.me")
            )

        item = result.items[0]
        assert item.title == "A" * 100
        assert item.content == text
        assert item.link == "https://bsky.app/profile/evanyou.me/post/3kxyz"
        assert item.published_at == int(datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)

    async def test_unknown_handle_is_a_failed_result(self):
        async with mock_client(lambda request: httpx.Response(400, json={"error": "InvalidRequest"})) as client:
            result = await BlueskyAdapter(client).fetch_items(source(type="bluesky", url="nobody.invalid"))

        assert not result.success


class TestHNHiringAdapter:
    """Tests for the Who is hiring thread search."""

    async def test_filters_comments_by_keyword(self):
        long_post = "Acme | Senior Vue.js Engineer | Remote (UK) | " + "We build things. " * 20

        def handler(request: httpx.Request) -> httpx.Response:
            if "search_by_date" in request.url.path:
                return httpx.Response(200, json={"hits": [{"objectID": "100"}]})
            assert request.url.path.endswith("/items/100")
            return httpx.Response(200, json={"children": [
                {"id": 1, "text": f"<p>{long_post}</p>", "created_at": "2026-01-05T12:00:00.000Z"},
                {"id": 2, "text": "Python shop, Django only", "created_at": "2026-01-05T12:00:00.000Z"},
                {"id": 3, "text": None},
            ]})

        hn_source = source(id="hn-hiring", type="api", category="jobs",
                           url="https://hn.algolia.com/api/v1/search_by_date?query=hiring")
        async with mock_client(handler) as client:
            result = await HNHiringAdapter(client).fetch_items(hn_source)

        assert result.item_count == 1
        item = result.items[0]
        assert item.link == "https://news.ycombinator.com/item?id=1"
        assert item.title.endswith("…")
        assert len(item.title) == 101

    async def test_upstream_failure_escapes_adapter(self):
        hn_source = source(id="hn-hiring", type="api", category="jobs",
                           url="https://hn.algolia.com/api/v1/search_by_date?query=hiring")
        async with mock_client(lambda request: httpx.Response(502)) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await HNHiringAdapter(client).fetch_items(hn_source)

    async def test_no_thread_found(self):
        hn_source = source(id="hn-hiring", type="api", category="jobs",
                           url="https://hn.algolia.com/api/v1/search_by_date?query=hiring")
        async with mock_client(json_handler({"hits": []})) as client:
            result = await HNHiringAdapter(client).fetch_items(hn_source)

        assert result.success
        assert result.items == []


class TestScrapeAdapter:
    """Tests for markdown link scraping."""

    async def test_extracts_article_links(self):
        markdown = "\n".join([
            "[Every](https://every.to/)",
            "[The AI Agent Playbook](https://every.to/chain-of-thought/the-ai-agent-playbook)",
            "[Newsletter](https://every.to/newsletter)",
            "[The AI Agent Playbook again](https://every.to/chain-of-thought/the-ai-agent-playbook)",
            "[Elsewhere](https://other.example.com/post/1)",
        ])

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url).startswith("https://r.jina.ai/")
            return httpx.Response(200, text=markdown)

        async with mock_client(handler) as client:
            result = await ScrapeAdapter(client).fetch_items(
                source(id="every-to", type="scrape", url="https://every.to/", category="ai")
            )

        assert [item.link for item in result.items] == ["https://every.to/chain-of-thought/the-ai-agent-playbook"]
        assert result.items[0].title == "The AI Agent Playbook"

    async def test_unconfigured_source_fails(self):
        async with mock_client(lambda request: httpx.Response(200, text="")) as client:
            result = await ScrapeAdapter(client).fetch_items(source(id="unknown-site", type="scrape"))

        assert not result.success
        assert "unknown-site" in result.error


class TestRegistry:
    """Tests for adapter lookup."""

    @pytest.mark.parametrize("source_type", ["rss", "reddit", "hn", "github"])
    def test_feed_types(self, source_type):
        assert resolve_adapter_class(source(type=source_type)) is FeedAdapter

    def test_id_takes_priority_over_type(self):
        assert resolve_adapter_class(source(id="remoteok", type="api")) is RemoteOKAdapter
        assert resolve_adapter_class(source(id="hn-hiring", type="api")) is HNHiringAdapter

    def test_api_type_defaults_to_jobicy(self):
        assert resolve_adapter_class(source(id="jobicy-vue-uk", type="api")) is JobicyAdapter

    def test_unknown_type_raises(self):
        with pytest.raises(ValueError):
            resolve_adapter_class(source(type="carrier-pigeon"))

    async def test_create_adapter_binds_client(self):
        async with httpx.AsyncClient() as client:
            adapter = create_adapter(source(type="bluesky"), client)
        assert isinstance(adapter, BlueskyAdapter)
        assert adapter.client is client
