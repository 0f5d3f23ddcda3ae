from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

JOBS_CATEGORY = "jobs"

GENERATED = "generated"
SKIPPED = "skipped"


@dataclass
class DigestItem:
    """
    One curated entry of a digest.
    position is assigned by the digest store when the item is persisted.
    """
    id: str
    digest_id: str
    category: str
    title: str
    summary: str
    source_name: str
    source_url: str
    why_it_matters: Optional[str] = None
    source_id: Optional[str] = None
    comments_url: Optional[str] = None
    published_at: Optional[int] = None
    position: int = 0
    comment_summary: Optional[str] = None
    comment_count: Optional[int] = None
    comment_score: Optional[int] = None
    comment_summary_source: Optional[str] = None  # generated | skipped


@dataclass
class Digest:
    """
    Curated digest for one calendar date.
    """
    id: str
    date: str
    item_count: int
    items: List[DigestItem] = field(default_factory=list)


@dataclass(frozen=True)
class SourceHealthRecord:
    source_id: str
    last_success_at: Optional[int]
    last_error_at: Optional[int]
    last_error: Optional[str]
    item_count: int
    consecutive_failures: int


@dataclass(frozen=True)
class AIUsageEntry:
    """
    Audit record of a single LLM call, successful or not.
    """
    model: str
    provider: str
    status: str  # success | rate_limited | error
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    latency_ms: Optional[int] = None
    was_fallback: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class PipelineResult:
    status: str  # success | duplicate | error
    message: str
    digest_id: Optional[str] = None
    item_count: int = 0

    @property
    def ok(self) -> bool:
        return self.status != "error"


def digest_id_for(date: str) -> str:
    return f"digest-{date}"


def today_utc() -> str:
    return datetime.now(timezone.utc).date().isoformat()
