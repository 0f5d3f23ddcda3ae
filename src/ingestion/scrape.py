"""
Ingest article links from sites without a feed, via the Jina reader markdown rendering
"""
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List
from urllib.parse import urlparse

from ingestion.base import (
    ITEM_LIMIT,
    RawItem,
    SourceAdapter,
    SourceFetchError,
    strip_html,
)
from services.config import SourceConfig

JINA_BASE = "https://r.jina.ai"

# [title](url)
MARKDOWN_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\((https?://[^\s)]+)\)")


@dataclass(frozen=True)
class ScrapeConfig:
    """Only links under url_prefix that are not excluded count as articles."""
    url_prefix: str
    excluded_paths: FrozenSet[str] = frozenset()


SCRAPE_CONFIGS: Dict[str, ScrapeConfig] = {
    "every-to": ScrapeConfig(
        url_prefix="https://every.to/",
        excluded_paths=frozenset({
            "/newsletter",
            "/podcast",
            "/store",
            "/courses",
            "/consulting",
            "/columnists",
            "/products",
        }),
    ),
}


def is_article_url(url: str, config: ScrapeConfig) -> bool:
    if not url.startswith(config.url_prefix):
        return False
    path = urlparse(url).path
    return path not in config.excluded_paths and len(path.split("/")) > 2


def parse_markdown_links(markdown: str, source_id: str, config: ScrapeConfig) -> List[RawItem]:
    seen = set()
    items: List[RawItem] = []

    for match in MARKDOWN_LINK_PATTERN.finditer(markdown):
        title, url = match.group(1), match.group(2)
        if not is_article_url(url, config) or url in seen:
            continue
        seen.add(url)

        items.append(
            RawItem(
                source_id=source_id,
                title=strip_html(title) or "Untitled",
                link=url,
            )
        )
        if len(items) >= ITEM_LIMIT:
            break

    return items


class ScrapeAdapter(SourceAdapter):
    async def fetch(self, source: SourceConfig) -> List[RawItem]:
        config = SCRAPE_CONFIGS.get(source.id)
        if config is None:
            raise SourceFetchError(f"No scrape config for source: {source.id}")

        resp = await self.get_ok(
            source,
            f"{JINA_BASE}/{source.url}",
            headers={"Accept": "text/markdown"},
        )
        return parse_markdown_links(resp.text, source.id, config)
