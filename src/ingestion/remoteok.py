"""
Ingest job listings from RemoteOK
"""
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

RELEVANT_TAGS = {
    "vue",
    "vuejs",
    "vue.js",
    "nuxt",
    "frontend",
    "front end",
    "front-end",
    "typescript",
    "javascript",
}


def is_relevant(job: Dict[str, Any]) -> bool:
    tags = [str(t).lower() for t in job.get("tags") or []]
    return any(t in RELEVANT_TAGS for t in tags)


class RemoteOKAdapter(SourceAdapter):
    async def fetch(self, source: SourceConfig) -> List[RawItem]:
        resp = await self.get_ok(source, source.url)
        data = resp.json()

        # First element is a legal notice, not a job
        jobs = [job for job in data[1:] if isinstance(job, dict)]
        relevant = [job for job in jobs if is_relevant(job)]

        return [
            RawItem(
                source_id=source.id,
                title=job_title(job.get("position"), job.get("company")),
                link=job.get("url") or "",
                content=strip_html(job.get("description")),
                published_at=parse_epoch_seconds(job.get("epoch")),
            )
            for job in relevant[:ITEM_LIMIT]
        ]
