"""
DigestPipeline - fetch, accumulate, curate and summarize one day's digest.

generate is idempotent per date, rebuild replaces the date's digest, and
summarize appends whatever was accumulated since the last pass.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Sequence

import aiosqlite
import httpx

from core.entities import JOBS_CATEGORY, AIUsageEntry, DigestItem, PipelineResult, digest_id_for
from ingestion.base import RawItem
from ingestion.orchestrator import fetch_all
from processing.comments import discussion_platform, enrich_items
from processing.curation import cap_per_source, dedupe, split_jobs_and_news
from processing.summarizer import DigestError, generate_digest
from services.accumulation import AccumulationStore
from services.config import Config, get_enabled_sources
from services.database import Database
from services.digest_store import DigestStore
from services.event_log import EventLog
from services.llm import LLMProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchSummary:
    total_items: int
    new_items: int
    sources_ok: int
    sources_total: int


@dataclass(frozen=True)
class EnrichSummary:
    enriched: int
    skipped: int
    remaining: int


class DigestPipeline:
    def __init__(
        self,
        config: Config,
        database: Database,
        providers: Sequence[LLMProvider],
        event_log: EventLog,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.providers = list(providers)
        self.event_log = event_log
        self.client = client
        self.accumulation = AccumulationStore(database, event_log)
        self.digests = DigestStore(database)

    @asynccontextmanager
    async def _http_client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(timeout=self.config.REQUEST_TIMEOUT) as client:
            yield client

    async def fetch(self, date: str) -> FetchSummary:
        """Fetch every enabled source, record source health and accumulate the items."""
        sources = get_enabled_sources(self.config)
        async with self._http_client() as client:
            result = await fetch_all(sources, self.config, client=client)

        await self.digests.record_source_health(result.health)
        new_items = await self.accumulation.store_raw_items(result.items, date)

        summary = FetchSummary(
            total_items=len(result.items),
            new_items=new_items,
            sources_ok=result.sources_ok,
            sources_total=len(sources),
        )
        await self.event_log.log_event(
            "info",
            "fetch",
            f"Fetched {summary.total_items} items ({summary.new_items} new) "
            f"from {summary.sources_ok}/{summary.sources_total} sources",
            details={
                "failed": {r.source_id: r.error for r in result.health if not r.success},
            },
        )
        return summary

    async def generate(self, date: str) -> PipelineResult:
        if await self.digests.digest_exists(date):
            return PipelineResult(
                status="duplicate",
                message=f"Digest already exists for {date}",
                digest_id=digest_id_for(date),
            )

        return await self._fetch_and_build(date)

    async def rebuild(self, date: str) -> PipelineResult:
        await self.digests.delete_digest(date)
        await self.event_log.log_event("info", "digest", f"Deleted digest for {date} before rebuild",
                                       digest_id=digest_id_for(date))

        return await self._fetch_and_build(date)

    async def _fetch_and_build(self, date: str) -> PipelineResult:
        # an empty fetch aborts even when earlier passes left items in the window
        summary = await self.fetch(date)
        if summary.total_items == 0:
            return await self._no_items(digest_id_for(date))

        raw_items = await self.accumulation.load_recent_raw_items(date)
        return await self._build(date, raw_items, append=False)

    async def _no_items(self, digest_id: str) -> PipelineResult:
        await self.event_log.log_event("error", "digest", "No items fetched", digest_id=digest_id)
        return PipelineResult(status="error", message="No items fetched", digest_id=digest_id)

    async def summarize(self, date: str) -> PipelineResult:
        raw_items = await self.accumulation.load_unsummarized_raw_items(date)
        if not raw_items:
            return PipelineResult(status="success", message="No new items to summarize")
        return await self._build(date, raw_items, append=True)

    async def enrich_comments(self, date: str, limit: Optional[int] = None) -> EnrichSummary:
        """
        Enrich up to `limit` persisted items of the date that carry no comment outcome.
        Items whose earlier attempts failed queue behind untried ones.
        """
        if limit is None:
            limit = self.config.ENRICH_BATCH_SIZE
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")

        pending = await self.digests.items_pending_enrichment(date)
        eligible = [item for item in pending if discussion_platform(item)]
        batch = eligible[:limit]
        if not batch:
            return EnrichSummary(enriched=0, skipped=0, remaining=0)

        async with self._http_client() as client:
            result = await enrich_items(batch, self.providers, client, event_log=self.event_log)

        changed = [item for item in result.items if item.comment_summary_source is not None]
        failed = [item.id for item in result.items if item.comment_summary_source is None]
        await self.digests.update_comment_fields(changed)
        await self.digests.record_enrichment_attempts(failed)
        await self.event_log.record_ai_usage(result.ai_usages)

        summary = EnrichSummary(
            enriched=result.enriched,
            skipped=result.skipped,
            remaining=len(eligible) - len(changed),
        )
        await self.event_log.log_event(
            "info",
            "comments",
            f"Comment enrichment: {summary.enriched} enriched, {summary.skipped} skipped, "
            f"{summary.remaining} remaining",
            digest_id=digest_id_for(date),
        )
        return summary

    def _category_limits(self) -> Dict[str, Dict[str, int]]:
        limits = self.config.category_limits
        return {
            "news": {category: limit for category, limit in limits.items() if category != JOBS_CATEGORY},
            "jobs": {category: limit for category, limit in limits.items() if category == JOBS_CATEGORY},
        }

    async def _build(self, date: str, raw_items: List[RawItem], append: bool) -> PipelineResult:
        digest_id = digest_id_for(date)

        if not raw_items:
            return await self._no_items(digest_id)

        recent = await self.digests.recent_digest_items(date, self.config.DEDUP_DAYS)
        candidates = dedupe(raw_items, recent)
        if self.config.MAX_ITEMS_PER_SOURCE:
            candidates = cap_per_source(candidates, self.config.MAX_ITEMS_PER_SOURCE)

        logger.info(
            f"Curated {len(raw_items)} raw items down to {len(candidates)}",
            extra={"digest_id": digest_id},
        )

        candidate_ids = {item.id for item in candidates}
        consumed = [item.id for item in raw_items if item.id not in candidate_ids]

        if not candidates:
            await self.accumulation.mark_summarized(consumed)
            return PipelineResult(
                status="success",
                message="All items were already in recent digests",
                digest_id=digest_id,
            )

        split = split_jobs_and_news(candidates, self.config.source_categories())
        limits = self._category_limits()
        source_names = self.config.source_names()

        usages: List[AIUsageEntry] = []
        digest_items: List[DigestItem] = []
        failures: List[str] = []
        attempted = 0

        for label, items in (("news", split.news_items), ("jobs", split.job_items)):
            if not items or not limits[label]:
                continue
            attempted += 1
            try:
                result = await generate_digest(
                    items,
                    self.providers,
                    limits[label],
                    event_log=self.event_log,
                    source_names=source_names,
                )
            except DigestError as e:
                usages.extend(e.ai_usages)
                failures.append(label)
                await self.event_log.log_event(
                    "error", "digest", f"{label} summarization failed: {e}", digest_id=digest_id
                )
                continue

            usages.extend(result.ai_usages)
            digest_items.extend(result.items)
            consumed.extend(item.id for item in items)

        await self.event_log.record_ai_usage(usages)

        if attempted and len(failures) == attempted:
            return PipelineResult(
                status="error",
                message=f"Digest generation failed for {', '.join(failures)}",
                digest_id=digest_id,
            )

        if self.config.ENRICH_INLINE and digest_items:
            async with self._http_client() as client:
                enrichment = await enrich_items(digest_items, self.providers, client, event_log=self.event_log)
            digest_items = enrichment.items
            await self.event_log.record_ai_usage(enrichment.ai_usages)

        if digest_items:
            try:
                if append:
                    digest = await self.digests.append_items(date, digest_items)
                else:
                    digest = await self.digests.save_digest(date, digest_items)
            except aiosqlite.Error as e:
                logger.exception(f"Failed to persist digest {digest_id}")
                await self.event_log.log_event("error", "digest", f"Failed to persist digest: {e}",
                                               digest_id=digest_id)
                return PipelineResult(status="error", message=f"Failed to save digest: {e}", digest_id=digest_id)
            total = digest.item_count
        else:
            total = 0

        await self.accumulation.mark_summarized(consumed)

        message = f"Generated digest with {len(digest_items)} items"
        if append:
            message = f"Added {len(digest_items)} items to digest ({total} total)"
        if failures:
            message += f" ({', '.join(failures)} failed)"

        await self.event_log.log_event("info", "digest", message, digest_id=digest_id)
        return PipelineResult(status="success", message=message, digest_id=digest_id, item_count=len(digest_items))
