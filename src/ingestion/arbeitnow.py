"""
Ingest remote job listings from Arbeitnow
"""
import re
from typing import Any, Dict, List

from ingestion.base import (
    ITEM_LIMIT,
    RawItem,
    SourceAdapter,
    job_title,
    parse_epoch_seconds,
    strip_html,
)
from services.config import SourceConfig

RELEVANT_KEYWORDS = re.compile(r"\b(vue|vuejs|vue\.js|nuxt)\b", re.IGNORECASE)


def is_relevant(job: Dict[str, Any]) -> bool:
    if not job.get("remote"):
        return False
    title = job.get("title") or ""
    tags = " ".join(job.get("tags") or [])
    return bool(RELEVANT_KEYWORDS.search(title) or RELEVANT_KEYWORDS.search(tags))


class ArbeitnowAdapter(SourceAdapter):
    async def fetch(self, source: SourceConfig) -> List[RawItem]:
        resp = await self.get_ok(source, source.url)
        jobs = resp.json().get("data") or []
        relevant = [job for job in jobs if is_relevant(job)]

        return [
            RawItem(
                source_id=source.id,
                title=job_title(job.get("title"), job.get("company_name")),
                link=job.get("url") or "",
                content=strip_html(job.get("description")),
                published_at=parse_epoch_seconds(job.get("created_at")),
            )
            for job in relevant[:ITEM_LIMIT]
        ]
