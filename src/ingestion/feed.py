"""
Ingestion from RSS and Atom sources
"""
import calendar
from typing import List, Optional

import feedparser

from ingestion.base import (
    ITEM_LIMIT,
    RawItem,
    SourceAdapter,
    SourceFetchError,
    strip_html,
)
from services.config import SourceConfig


def _entry_timestamp(entry) -> Optional[int]:
    """feedparser normalizes dates to UTC struct_time."""
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return calendar.timegm(parsed) * 1000
    return None


def _entry_content(entry) -> str:
    content = entry.get("content")
    if content:
        return content[0].get("value", "")
    return entry.get("summary", "") or entry.get("description", "")


class FeedAdapter(SourceAdapter):
    """RSS 2.0 / Atom feeds: blogs, release feeds, subreddit and hnrss feeds."""

    async def fetch(self, source: SourceConfig) -> List[RawItem]:
        resp = await self.get_ok(source, source.url, follow_redirects=True)

        feed = feedparser.parse(resp.content)
        if feed.bozo and not feed.entries:
            raise SourceFetchError(f"Malformed feed from {source.name}: {feed.get('bozo_exception')}")

        items: List[RawItem] = []
        for entry in feed.entries[:ITEM_LIMIT]:
            items.append(
                RawItem(
                    source_id=source.id,
                    title=strip_html(entry.get("title")) or "Untitled",
                    link=entry.get("link", ""),
                    comments_url=entry.get("comments"),
                    content=strip_html(_entry_content(entry)),
                    published_at=_entry_timestamp(entry),
                )
            )

        return items
