"""Shared fixtures: small configs, a temporary SQLite store and fake LLM providers."""

from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Callable, List, Optional, Union

import httpx
import pytest

from services.config import Config, SourceConfig
from services.database import Database
from services.event_log import EventLog
from services.llm import Completion, ProviderError

CATEGORY_LIMITS = {"ai": 10, "dev": 15, "jobs": 10, "sport": 5}
FRESHNESS = {"ai": 2, "dev": 7, "jobs": 7, "sport": 3}


def make_config(sources: Optional[List[SourceConfig]] = None, **overrides) -> Config:
    values = dict(
        DATABASE_PATH=":memory:",
        ADMIN_KEY="test-admin-key",
        category_limits=CATEGORY_LIMITS,
        freshness_thresholds=FRESHNESS,
        sources=sources if sources is not None else [
            SourceConfig(id="ai-blog", name="AI Blog", type="rss", url="https://ai.example.com/feed", category="ai"),
            SourceConfig(id="jobs-board", name="Jobs Board", type="rss", url="https://jobs.example.com/feed", category="jobs"),
        ],
    )
    values.update(overrides)
    return Config(**values)


def rss_feed(entries: List[dict]) -> str:
    """Minimal RSS 2.0 document; each entry has title, link and optional pubDate/description/comments."""
    items = []
    for entry in entries:
        parts = [f"<title>{entry['title']}</title>", f"<link>{entry['link']}</link>"]
        if "description" in entry:
            parts.append(f"<description>{entry['description']}</description>")
        if "comments" in entry:
            parts.append(f"<comments>{entry['comments']}</comments>")
        if "pubDate" in entry:
            parts.append(f"<pubDate>{entry['pubDate']}</pubDate>")
        items.append(f"<item>{''.join(parts)}</item>")
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel><title>Test</title><link>https://example.com</link>'
        f"{''.join(items)}</channel></rss>"
    )


def rfc822_now() -> str:
    return format_datetime(datetime.now(timezone.utc))


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeProvider:
    """
    Stands in for an LLMProvider. Each call consumes the next scripted response;
    an exception instance is raised instead of returned.
    """

    def __init__(self, name: str, responses: List[Union[str, Exception]], model: Optional[str] = None):
        self.name = name
        self.model = model or f"{name}-model"
        self.responses = list(responses)
        self.calls: List[dict] = []

    async def complete(self, system_prompt, user_prompt, max_tokens, temperature) -> Completion:
        self.calls.append({"system_prompt": system_prompt, "user_prompt": user_prompt})
        if not self.responses:
            raise ProviderError(self.name, "No scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return Completion(text=response, input_tokens=100, output_tokens=50, latency_ms=12)


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
async def database(tmp_path: Path) -> Database:
    db = Database(str(tmp_path / "digest.db"))
    await db.init_tables()
    return db


@pytest.fixture
def event_log(database: Database) -> EventLog:
    return EventLog(database)
