"""
Base classes for Ingestion
"""
import html
import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

from services.config import SourceConfig

logger = logging.getLogger(__name__)

ITEM_LIMIT = 20
TITLE_LIMIT = 100
USER_AGENT = "feed-digest/1.0"

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


class RawItem(BaseModel):
    """
    Normalized item produced by a source adapter.
    published_at is unix milliseconds.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_id: str
    title: str
    link: str
    comments_url: Optional[str] = None
    content: Optional[str] = None
    published_at: Optional[int] = None


class SourceFetchError(Exception):
    """Expected adapter failure: bad HTTP status, malformed body."""


@dataclass
class SourceFetchResult:
    source_id: str
    success: bool
    item_count: int = 0
    error: Optional[str] = None
    items: List[RawItem] = field(default_factory=list)


def strip_html(text: Optional[str]) -> str:
    """Remove tags, decode entities and collapse whitespace."""
    if not text:
        return ""
    text = _TAG_RE.sub(" ", str(text))
    text = html.unescape(text)
    return _WS_RE.sub(" ", text).strip()


def parse_published_date(value: Optional[str]) -> Optional[int]:
    """Parse an ISO-8601 or RFC-822 date string into unix milliseconds."""
    if not value:
        return None
    value = str(value).strip()
    parsed = None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def parse_epoch_seconds(epoch: Optional[float]) -> Optional[int]:
    """Convert unix seconds to milliseconds."""
    if not epoch:
        return None
    try:
        return int(float(epoch) * 1000)
    except (TypeError, ValueError):
        return None


def truncate_title(text: str, ellipsis: bool = False) -> str:
    """Hard cap a free-text title at TITLE_LIMIT chars, optionally marking the cut."""
    if len(text) <= TITLE_LIMIT:
        return text
    if ellipsis:
        return text[:TITLE_LIMIT] + "…"
    return text[:TITLE_LIMIT]


def job_title(position: Optional[str], company: Optional[str]) -> str:
    title = strip_html(position) or "Untitled"
    company = strip_html(company)
    return f"{title} — {company}" if company else title


class SourceAdapter(ABC):
    """
    Base interface for all ingestion sources.

    Subclasses implement fetch(); callers use fetch_items(), which turns
    expected failures into an unsuccessful SourceFetchResult.
    """

    # Thread-search adapters let upstream HTTP failures escape to the orchestrator
    raise_upstream_errors = False

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @abstractmethod
    async def fetch(self, source: SourceConfig) -> List[RawItem]:
        """
        Fetch and normalize items for one source.
        May raise SourceFetchError or httpx errors.
        """
        raise NotImplementedError

    async def get(self, url: str, **kwargs) -> httpx.Response:
        headers = {"User-Agent": USER_AGENT, **kwargs.pop("headers", {})}
        return await self.client.get(url, headers=headers, **kwargs)

    async def get_ok(self, source: SourceConfig, url: str, **kwargs) -> httpx.Response:
        """GET that converts a non-2xx status into SourceFetchError."""
        resp = await self.get(url, **kwargs)
        if resp.status_code >= 400:
            raise SourceFetchError(f"HTTP {resp.status_code} from {source.name}")
        return resp

    async def fetch_items(self, source: SourceConfig) -> SourceFetchResult:
        try:
            items = await self.fetch(source)
        except httpx.HTTPStatusError as e:
            if self.raise_upstream_errors:
                raise
            logger.warning(f"Upstream error from {source.id}: {e}")
            return SourceFetchResult(source_id=source.id, success=False, error=str(e))
        except (SourceFetchError, httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to fetch {source.id}: {e}")
            return SourceFetchResult(source_id=source.id, success=False, error=str(e) or type(e).__name__)

        items = items[:ITEM_LIMIT]
        return SourceFetchResult(
            source_id=source.id,
            success=True,
            item_count=len(items),
            items=items,
        )
