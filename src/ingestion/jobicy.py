"""
Ingest remote job listings from the Jobicy JSON API
"""
from typing import List

from ingestion.base import (
    ITEM_LIMIT,
    RawItem,
    SourceAdapter,
    parse_published_date,
    strip_html,
)
from services.config import SourceConfig


class JobicyAdapter(SourceAdapter):
    async def fetch(self, source: SourceConfig) -> List[RawItem]:
        resp = await self.get_ok(source, source.url)
        data = resp.json()
        jobs = data.get("jobs") or []

        return [
            RawItem(
                source_id=source.id,
                title=strip_html(job.get("jobTitle")) or "Untitled",
                link=job.get("url") or "",
                content=strip_html(job.get("jobDescription")),
                published_at=parse_published_date(job.get("pubDate")),
            )
            for job in jobs[:ITEM_LIMIT]
        ]
