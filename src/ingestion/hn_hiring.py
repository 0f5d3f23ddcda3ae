"""
Ingest job postings from the latest Hacker News "Who is hiring" thread
"""
import re
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

ALGOLIA_ITEM_URL = "https://hn.algolia.com/api/v1/items/{id}"
HN_ITEM_URL = "https://news.ycombinator.com/item?id={id}"

JOB_KEYWORDS = re.compile(r"\b(vue|vuejs|vue\.js|nuxt)\b", re.IGNORECASE)


class HNHiringAdapter(SourceAdapter):
    """
    Two-step thread search: source.url is an Algolia search for the thread,
    the thread's top-level comments are the job postings.
    """

    raise_upstream_errors = True

    async def fetch(self, source: SourceConfig) -> List[RawItem]:
        search = await self.get(source.url)
        search.raise_for_status()

        hits = search.json().get("hits") or []
        if not hits:
            return []

        thread = await self.get(ALGOLIA_ITEM_URL.format(id=hits[0]["objectID"]))
        thread.raise_for_status()

        postings = [
            child for child in thread.json().get("children") or []
            if child.get("text") and JOB_KEYWORDS.search(child["text"])
        ]

        items: List[RawItem] = []
        for child in postings[:ITEM_LIMIT]:
            text = strip_html(child["text"])
            items.append(
                RawItem(
                    source_id=source.id,
                    title=truncate_title(text, ellipsis=True) or "Untitled",
                    link=HN_ITEM_URL.format(id=child["id"]),
                    content=text,
                    published_at=parse_published_date(child.get("created_at")),
                )
            )

        return items
