"""
Ingest job listings from the Himalayas API
"""
from typing import List

from ingestion.base import (
    ITEM_LIMIT,
    RawItem,
    SourceAdapter,
    job_title,
    parse_epoch_seconds,
    strip_html,
)
from services.config import SourceConfig


class HimalayasAdapter(SourceAdapter):
    async def fetch(self, source: SourceConfig) -> List[RawItem]:
        resp = await self.get_ok(source, source.url)
        jobs = resp.json().get("jobs") or []

        return [
            RawItem(
                source_id=source.id,
                title=job_title(job.get("title"), job.get("companyName")),
                link=job.get("applicationLink") or "",
                content=strip_html(job.get("description") or job.get("excerpt")),
                published_at=parse_epoch_seconds(job.get("pubDate")),
            )
            for job in jobs[:ITEM_LIMIT]
        ]
