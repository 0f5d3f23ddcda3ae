"""
Ingest posts from a Bluesky author feed
"""
from typing import List

from ingestion.base import (
    ITEM_LIMIT,
    RawItem,
    SourceAdapter,
    parse_published_date,
    strip_html,
    truncate_title,
)
from services.config import SourceConfig

RESOLVE_HANDLE_URL = "https://bsky.social/xrpc/com.atproto.identity.resolveHandle"
AUTHOR_FEED_URL = "https://public.api.bsky.app/xrpc/app.bsky.feed.getAuthorFeed"


def post_key(uri: str) -> str:
    """at://did:plc:xyz/app.bsky.feed.post/<rkey> -> <rkey>"""
    return uri.rstrip("/").split("/")[-1]


class BlueskyAdapter(SourceAdapter):
    """source.url holds the author's handle, e.g. evanyou.me"""

    async def fetch(self, source: SourceConfig) -> List[RawItem]:
        handle = source.url

        resolved = await self.get_ok(source, RESOLVE_HANDLE_URL, params={"handle": handle})
        did = resolved.json()["did"]

        feed_resp = await self.get_ok(
            source,
            AUTHOR_FEED_URL,
            params={"actor": did, "limit": ITEM_LIMIT},
        )
        feed = feed_resp.json().get("feed") or []

        items: List[RawItem] = []
        for entry in feed[:ITEM_LIMIT]:
            post = entry["post"]
            text = strip_html(post["record"].get("text", ""))
            items.append(
                RawItem(
                    source_id=source.id,
                    title=truncate_title(text) or "Untitled",
                    link=f"https://bsky.app/profile/{handle}/post/{post_key(post['uri'])}",
                    content=text,
                    published_at=parse_published_date(post["record"].get("createdAt")),
                )
            )

        return items
