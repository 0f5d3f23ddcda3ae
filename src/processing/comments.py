"""
Comment enrichment: summarize the Reddit / Hacker News discussion behind a digest item.

Runs over persisted digest items, or inline on fresh items before they are saved.
Low-engagement threads are marked "skipped" without an AI call.
"""
import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence
from urllib.parse import parse_qs, urlparse

import httpx

from core.entities import GENERATED, SKIPPED, AIUsageEntry, DigestItem
from ingestion.base import USER_AGENT, strip_html
from services.event_log import EventLog
from services.llm import AllProvidersFailed, LLMProvider, complete_with_failover

logger = logging.getLogger(__name__)

MIN_SCORE = 50
MIN_COMMENTS = 10
MAX_COMMENTS = 20
MAX_COMMENT_CHARS = 500
MIN_COMMENT_CHARS = 20
ENRICH_CONCURRENCY = 4

SUMMARY_MAX_TOKENS = 512
SUMMARY_TEMPERATURE = 0.3

# Reddit rejects generic user agents
REDDIT_USER_AGENT = "web:feed-digest:v1.0 (by /u/feed-digest-bot)"

REDDIT_SOURCE_IDS = frozenset({"r-localllama", "r-machinelearning", "r-vuejs", "r-laravel"})
HN_SOURCE_IDS = frozenset({"hn-ai", "hn-vue", "hn-frontend"})

ALGOLIA_SEARCH_URL = "https://hn.algolia.com/api/v1/search"
HN_FIREBASE_ITEM_URL = "https://hacker-news.firebaseio.com/v0/item/{id}.json"
HN_ITEM_URL = "https://news.ycombinator.com/item?id={id}"

REDDIT = "reddit"
HN = "hn"


@dataclass
class CommentThread:
    score: int
    comment_count: int
    comments: List[str] = field(default_factory=list)


@dataclass
class EnrichmentResult:
    items: List[DigestItem]
    ai_usages: List[AIUsageEntry] = field(default_factory=list)
    enriched: int = 0
    skipped: int = 0


def _host(url: Optional[str]) -> str:
    if not url:
        return ""
    return (urlparse(url).hostname or "").lower()


def is_reddit_url(url: Optional[str]) -> bool:
    host = _host(url)
    return host == "reddit.com" or host.endswith(".reddit.com")


def is_hn_url(url: Optional[str]) -> bool:
    return _host(url) == "news.ycombinator.com"


def discussion_platform(item: DigestItem) -> Optional[str]:
    """Which discussion platform an item's comments live on, if any."""
    if (
        is_reddit_url(item.source_url)
        or item.source_id in REDDIT_SOURCE_IDS
        or is_reddit_url(item.comments_url)
    ):
        return REDDIT
    if item.source_id in HN_SOURCE_IDS or is_hn_url(item.comments_url):
        return HN
    return None


def clean_comment(body: Optional[str]) -> Optional[str]:
    """Stripped and truncated comment body, None when too short to be useful."""
    text = strip_html(body)[:MAX_COMMENT_CHARS]
    return text if len(text) >= MIN_COMMENT_CHARS else None


def hn_item_id(comments_url: Optional[str]) -> Optional[str]:
    if not is_hn_url(comments_url):
        return None
    ids = parse_qs(urlparse(comments_url).query).get("id")
    return ids[0] if ids else None


def build_comment_prompt(title: str, comments: Sequence[str]) -> str:
    numbered = "\n\n".join(f"[{i}] {comment}" for i, comment in enumerate(comments, start=1))
    return f"""Summarize the key discussion points and notable opinions from these comments about "{title}" in 2-3 sentences. Highlight any consensus, controversy, or insights not in the article itself.

Comments:
{numbered}

Return ONLY the summary text, no JSON or formatting."""


async def fetch_reddit_thread(client: httpx.AsyncClient, post_url: str) -> Optional[CommentThread]:
    """
    Reddit serves a post and its comment tree as a two-element JSON listing at <post>.json
    """
    parsed = urlparse(post_url)
    json_url = parsed._replace(path=parsed.path.rstrip("/") + ".json", query="").geturl()

    resp = await client.get(json_url, headers={"User-Agent": REDDIT_USER_AGENT, "Accept": "application/json"})
    if resp.status_code >= 400:
        logger.warning(f"Reddit: HTTP {resp.status_code} for {json_url}")
        return None

    data = resp.json()
    if not isinstance(data, list) or len(data) < 2:
        logger.warning(f"Reddit: unexpected listing shape for {json_url}")
        return None

    posts = data[0].get("data", {}).get("children") or []
    if not posts:
        return None
    post = posts[0].get("data", {})

    comments = []
    for node in data[1].get("data", {}).get("children") or []:
        if len(comments) >= MAX_COMMENTS:
            break
        text = clean_comment(node.get("data", {}).get("body"))
        if text:
            comments.append(text)

    return CommentThread(
        score=post.get("score") or 0,
        comment_count=post.get("num_comments") or 0,
        comments=comments,
    )


async def _fetch_hn_comment(client: httpx.AsyncClient, kid_id: int) -> Optional[str]:
    try:
        resp = await client.get(HN_FIREBASE_ITEM_URL.format(id=kid_id), headers={"User-Agent": USER_AGENT})
        if resp.status_code >= 400:
            return None
        comment = resp.json() or {}
    except (httpx.HTTPError, ValueError) as e:
        logger.debug(f"HN: comment {kid_id} unavailable: {e}")
        return None
    return clean_comment(comment.get("text"))


async def fetch_hn_thread(
    client: httpx.AsyncClient,
    article_url: str,
    comments_url: Optional[str] = None,
) -> Optional[CommentThread]:
    """
    Use the item id from comments_url when present, otherwise search Algolia by article URL.
    """
    item_id = hn_item_id(comments_url)
    score = comment_count = None

    if item_id is None:
        search = await client.get(
            ALGOLIA_SEARCH_URL,
            params={"query": article_url, "restrictSearchableAttributes": "url", "hitsPerPage": 1},
            headers={"User-Agent": USER_AGENT},
        )
        search.raise_for_status()
        hits = search.json().get("hits") or []
        if not hits:
            logger.info(f"HN: no discussion found for {article_url}")
            return CommentThread(score=0, comment_count=0)
        item_id = hits[0]["objectID"]
        score = hits[0].get("points") or 0
        comment_count = hits[0].get("num_comments") or 0

    resp = await client.get(HN_FIREBASE_ITEM_URL.format(id=item_id), headers={"User-Agent": USER_AGENT})
    resp.raise_for_status()
    story = resp.json() or {}

    if score is None:
        score = story.get("score") or 0
        comment_count = story.get("descendants") or 0

    kids = (story.get("kids") or [])[:MAX_COMMENTS]
    texts = await asyncio.gather(*(_fetch_hn_comment(client, kid) for kid in kids))

    return CommentThread(
        score=score,
        comment_count=comment_count,
        comments=[text for text in texts if text],
    )


class CommentEnricher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        providers: Sequence[LLMProvider],
        event_log: Optional[EventLog] = None,
        concurrency: int = ENRICH_CONCURRENCY,
    ):
        self.client = client
        self.providers = providers
        self.event_log = event_log
        self.semaphore = asyncio.Semaphore(concurrency)

    async def fetch_thread(self, item: DigestItem, platform: str) -> Optional[CommentThread]:
        if platform == REDDIT:
            post_url = item.comments_url if is_reddit_url(item.comments_url) else item.source_url
            return await fetch_reddit_thread(self.client, post_url)
        return await fetch_hn_thread(self.client, item.source_url, item.comments_url)

    async def enrich_item(self, item: DigestItem, usages: List[AIUsageEntry]) -> DigestItem:
        """
        Returns the item with comment fields set, or unchanged when the
        thread could not be fetched or summarized.
        """
        platform = discussion_platform(item)
        if platform is None or item.comment_summary_source is not None:
            return item

        async with self.semaphore:
            thread = await self.fetch_thread(item, platform)
            if thread is None:
                return item

            if thread.score < MIN_SCORE or thread.comment_count < MIN_COMMENTS:
                logger.info(
                    f"{platform}: below threshold (score={thread.score}, comments={thread.comment_count}) "
                    f"for '{item.title}'"
                )
                return replace(
                    item,
                    comment_count=thread.comment_count,
                    comment_score=thread.score,
                    comment_summary_source=SKIPPED,
                )

            if not thread.comments:
                # engaged thread whose comments are all too short or not yet loaded
                logger.info(f"{platform}: no usable comment text for '{item.title}'")
                return item

            try:
                completion, attempt_usages = await complete_with_failover(
                    self.providers,
                    None,
                    build_comment_prompt(item.title, thread.comments),
                    SUMMARY_MAX_TOKENS,
                    SUMMARY_TEMPERATURE,
                )
            except AllProvidersFailed as e:
                usages.extend(e.usages)
                raise

        usages.extend(attempt_usages)
        return replace(
            item,
            comment_summary=completion.text,
            comment_count=thread.comment_count,
            comment_score=thread.score,
            comment_summary_source=GENERATED,
        )

    async def _enrich_isolated(self, item: DigestItem, usages: List[AIUsageEntry]) -> DigestItem:
        try:
            return await self.enrich_item(item, usages)
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError, AllProvidersFailed) as e:
            logger.warning(f"Failed to enrich '{item.title}' with comments: {e}")
            if self.event_log:
                await self.event_log.log_event(
                    "warn",
                    "comments",
                    f"Comment enrichment failed for '{item.title}': {e}",
                    digest_id=item.digest_id or None,
                )
            return item

    async def enrich_items(self, items: Sequence[DigestItem]) -> EnrichmentResult:
        usages: List[AIUsageEntry] = []
        enriched_items = await asyncio.gather(*(self._enrich_isolated(item, usages) for item in items))

        result = EnrichmentResult(items=list(enriched_items), ai_usages=usages)
        for before, after in zip(items, enriched_items):
            if before.comment_summary_source is None and after.comment_summary_source == GENERATED:
                result.enriched += 1
            elif before.comment_summary_source is None and after.comment_summary_source == SKIPPED:
                result.skipped += 1

        logger.info(f"Comment enrichment complete: {result.enriched} enriched, {result.skipped} skipped")
        return result


async def enrich_items(
    items: Sequence[DigestItem],
    providers: Sequence[LLMProvider],
    client: httpx.AsyncClient,
    event_log: Optional[EventLog] = None,
    concurrency: int = ENRICH_CONCURRENCY,
) -> EnrichmentResult:
    """Enrich every eligible item; per-item failures leave that item unchanged."""
    enricher = CommentEnricher(client, providers, event_log=event_log, concurrency=concurrency)
    return await enricher.enrich_items(items)
