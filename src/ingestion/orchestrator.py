"""
Fetch Orchestrator - runs every source adapter concurrently and merges the results
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from ingestion.base import RawItem, SourceFetchResult
from ingestion.source_factory import create_adapter
from services.config import Config, SourceConfig

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class FetchAllResult:
    items: List[RawItem] = field(default_factory=list)
    health: List[SourceFetchResult] = field(default_factory=list)

    @property
    def sources_ok(self) -> int:
        return sum(1 for result in self.health if result.success)


async def _fetch_source(source: SourceConfig, client: httpx.AsyncClient) -> SourceFetchResult:
    """One isolated task: nothing escapes, every outcome becomes a SourceFetchResult."""
    try:
        adapter = create_adapter(source, client)
        return await adapter.fetch_items(source)
    except Exception as e:
        logger.error(f"Fetch failed for {source.id}: {e}", extra={"source_id": source.id})
        return SourceFetchResult(
            source_id=source.id,
            success=False,
            error=str(e) or type(e).__name__,
        )


def filter_fresh(items: List[RawItem], config: Config, now_ms: Optional[int] = None) -> List[RawItem]:
    """
    Drop dated items older than their source category's freshness threshold.
    Undated items are always kept.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    categories = config.source_categories()

    fresh = []
    for item in items:
        if item.published_at is None:
            fresh.append(item)
            continue
        max_age_ms = config.freshness_days(categories.get(item.source_id)) * DAY_MS
        if now_ms - item.published_at <= max_age_ms:
            fresh.append(item)
    return fresh


async def fetch_all(
    sources: List[SourceConfig],
    config: Config,
    client: Optional[httpx.AsyncClient] = None,
) -> FetchAllResult:
    """
    Fetch all sources concurrently. Never raises for a source failure.

    Args:
        sources: Sources to fetch
        config: Runtime configuration (freshness thresholds, timeout)
        client: Shared HTTP client, created for this run when not given

    Returns:
        FetchAllResult with the fresh items and one health record per source
    """
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=config.REQUEST_TIMEOUT)

    try:
        health = await asyncio.gather(*(_fetch_source(source, client) for source in sources))
    finally:
        if owns_client:
            await client.aclose()

    items = [item for result in health for item in result.items]
    fresh = filter_fresh(items, config)

    failed = [result for result in health if not result.success]
    logger.info(
        f"Fetched {len(items)} items from {len(sources) - len(failed)}/{len(sources)} sources, "
        f"{len(fresh)} after freshness filter"
    )
    for result in failed:
        logger.warning(f"Source {result.source_id} failed: {result.error}", extra={"source_id": result.source_id})

    return FetchAllResult(items=fresh, health=list(health))
