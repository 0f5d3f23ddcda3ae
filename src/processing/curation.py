"""
Curation stages applied to accumulated raw items before summarization.
All functions are pure.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from core.entities import JOBS_CATEGORY, DigestItem
from ingestion.base import RawItem


@dataclass
class CategorySplit:
    job_items: List[RawItem] = field(default_factory=list)
    news_items: List[RawItem] = field(default_factory=list)


def dedupe(items: Sequence[RawItem], recent_digest_items: Sequence[DigestItem]) -> List[RawItem]:
    """
    Drop items already published recently: the link matches a digest source_url,
    or the title matches a digest title ignoring case.
    """
    seen_urls = {item.source_url for item in recent_digest_items}
    seen_titles = {item.title.lower() for item in recent_digest_items}

    return [
        item for item in items
        if item.link not in seen_urls and item.title.lower() not in seen_titles
    ]


def cap_per_source(items: Sequence[RawItem], max_per_source: int) -> List[RawItem]:
    """
    Keep the newest max_per_source items of each source.
    Undated items rank last. Sources keep the order of their first appearance.
    """
    groups: Dict[str, List[RawItem]] = {}
    for item in items:
        groups.setdefault(item.source_id, []).append(item)

    capped: List[RawItem] = []
    for group in groups.values():
        # sorted() is stable, so ties keep input order
        ranked = sorted(
            group,
            key=lambda item: (item.published_at is None, -(item.published_at or 0)),
        )
        capped.extend(ranked[:max_per_source])
    return capped


def split_jobs_and_news(items: Sequence[RawItem], source_categories: Dict[str, str]) -> CategorySplit:
    """Unknown source ids fall into the news partition."""
    split = CategorySplit()
    for item in items:
        if source_categories.get(item.source_id) == JOBS_CATEGORY:
            split.job_items.append(item)
        else:
            split.news_items.append(item)
    return split
