"""
AI summarization: turn curated raw items into digest items with one LLM call,
failing over across the provider chain.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from core.entities import AIUsageEntry, DigestItem
from core.schemas import DigestSelection
from ingestion.base import RawItem
from services.event_log import EventLog
from services.llm import AllProvidersFailed, LLMProvider, complete_with_failover

logger = logging.getLogger(__name__)

MAX_TOKENS = 8192
TEMPERATURE = 0.3
PREVIEW_CHARS = 200

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL)

SYSTEM_PROMPT = """You curate a daily tech digest for a senior full-stack developer based in the UK.
Interests: AI and LLM developments, the Vue / Vite / Nuxt ecosystem, Laravel and Rails,
web platform changes, remote Vue and TypeScript jobs, and Lincoln City FC.
You answer with JSON only."""


class DigestError(Exception):
    """Summarization failed. ai_usages holds every attempt made before the failure."""

    def __init__(self, message: str, ai_usages: Optional[List[AIUsageEntry]] = None):
        super().__init__(message)
        self.ai_usages = ai_usages or []


@dataclass
class DigestResult:
    items: List[DigestItem] = field(default_factory=list)
    ai_usages: List[AIUsageEntry] = field(default_factory=list)


def build_prompt(
    items: Sequence[RawItem],
    category_limits: Mapping[str, int],
    source_names: Mapping[str, str],
) -> str:
    """
    Items are grouped by source; each line carries the item's index in `items`.
    """
    groups: Dict[str, List[int]] = {}
    for index, item in enumerate(items):
        groups.setdefault(item.source_id, []).append(index)

    sections = []
    for source_id, indexes in groups.items():
        lines = [f"## {source_names.get(source_id, source_id)}"]
        for index in indexes:
            item = items[index]
            preview = (item.content or "").replace("\n", " ").strip()[:PREVIEW_CHARS]
            lines.append(f"[{index}] {item.title}")
            if preview:
                lines.append(f"    {preview}")
        sections.append("\n".join(lines))

    total = sum(category_limits.values())
    limits = "\n".join(f'- "{category}": at most {limit}' for category, limit in category_limits.items())
    category_names = ", ".join(f'"{category}"' for category in category_limits)
    body = "\n\n".join(sections)

    return f"""Here are {len(items)} items from {len(groups)} sources, grouped by source.
The number in brackets is the item_index.

{body}

Select up to {total} of the most important and interesting items.
Diversify across sources: include at least one item from every source with notable content.

Category limits:
{limits}

For each selected item return an object with:
- item_index: the number in brackets (integer)
- title: a clear, concise title (rewrite if needed)
- summary: 2-3 sentences on what happened
- why_it_matters: one sentence on practical relevance (optional)
- category: one of {category_names}
- source_name: the source heading the item was listed under

Return ONLY a JSON array, no other text:
[{{"item_index": 0, "title": "...", "summary": "...", "why_it_matters": "...", "category": "...", "source_name": "..."}}]"""


def strip_code_fences(content: str) -> str:
    content = content.strip()
    match = _FENCE_RE.match(content)
    if match:
        return match.group(1).strip()
    return content


def _recover_truncated(content: str) -> List[Any]:
    """Cut a response that ran out of tokens after its last complete object and close the array."""
    end = content.rfind("}")
    if end == -1:
        raise ValueError("Unparseable response, no complete object")
    try:
        return json.loads(content[:end + 1] + "]")
    except json.JSONDecodeError as e:
        raise ValueError(f"Unparseable response after truncation recovery: {e}") from e


def parse_json_array(content: str) -> List[Any]:
    """
    Raises:
        ValueError: When the response is not a JSON array, even after recovery
    """
    content = strip_code_fences(content)
    start = content.find("[")
    if start > 0:
        content = content[start:]

    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        logger.warning("Response is not valid JSON, attempting truncation recovery")
        data = _recover_truncated(content)

    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array, got {type(data).__name__}")
    return data


def validate_selections(
    elements: Sequence[Any],
    item_count: int,
    category_limits: Mapping[str, int],
) -> List[DigestSelection]:
    """Drop malformed elements one by one."""
    valid = []
    for position, element in enumerate(elements):
        try:
            selection = DigestSelection.model_validate(element)
        except ValidationError as e:
            logger.warning(f"Dropping response element {position}: {e.error_count()} validation errors")
            continue

        if selection.item_index >= item_count:
            logger.warning(f"Dropping response element {position}: item_index {selection.item_index} out of range")
            continue
        if selection.category not in category_limits:
            logger.warning(f"Dropping response element {position}: unknown category '{selection.category}'")
            continue
        valid.append(selection)
    return valid


def enforce_category_limits(
    selections: Sequence[DigestSelection],
    category_limits: Mapping[str, int],
) -> List[DigestSelection]:
    """First-seen-wins in response order."""
    counts: Dict[str, int] = {}
    kept = []
    for selection in selections:
        count = counts.get(selection.category, 0)
        if count >= category_limits.get(selection.category, 0):
            continue
        counts[selection.category] = count + 1
        kept.append(selection)
    return kept


def to_digest_items(
    selections: Sequence[DigestSelection],
    items: Sequence[RawItem],
    source_names: Mapping[str, str],
) -> List[DigestItem]:
    """URLs and dates always come from the raw item, never from model output."""
    digest_items = []
    for selection in selections:
        raw = items[selection.item_index]
        digest_items.append(
            DigestItem(
                id="",
                digest_id="",
                category=selection.category,
                title=selection.title.strip(),
                summary=selection.summary.strip(),
                why_it_matters=(selection.why_it_matters or "").strip() or None,
                source_name=source_names.get(raw.source_id, selection.source_name),
                source_url=raw.link,
                source_id=raw.source_id,
                comments_url=raw.comments_url,
                published_at=raw.published_at,
            )
        )
    return digest_items


async def generate_digest(
    items: Sequence[RawItem],
    providers: Sequence[LLMProvider],
    category_limits: Mapping[str, int],
    event_log: Optional[EventLog] = None,
    source_names: Optional[Mapping[str, str]] = None,
) -> DigestResult:
    """
    Summarize items into digest item drafts; positions are assigned on save.

    Raises:
        DigestError: When every provider fails or returns an unusable response
    """
    if not items:
        return DigestResult()

    source_names = source_names or {}
    prompt = build_prompt(items, category_limits, source_names)

    def parse(content: str) -> List[DigestSelection]:
        elements = parse_json_array(content)
        return validate_selections(elements, len(items), category_limits)

    try:
        selections, usages = await complete_with_failover(
            providers, SYSTEM_PROMPT, prompt, MAX_TOKENS, TEMPERATURE, parse=parse
        )
    except AllProvidersFailed as e:
        if event_log:
            await event_log.log_event("error", "summarizer", f"Digest generation failed: {e}")
        raise DigestError(str(e), e.usages) from e

    kept = enforce_category_limits(selections, category_limits)
    digest_items = to_digest_items(kept, items, source_names)

    logger.info(f"Selected {len(digest_items)} of {len(items)} items ({len(selections) - len(kept)} over category limits)")
    if event_log:
        await event_log.log_event(
            "info",
            "summarizer",
            f"Generated {len(digest_items)} digest items from {len(items)} inputs",
            details={"provider": usages[-1].provider, "attempts": len(usages)},
        )

    return DigestResult(items=digest_items, ai_usages=usages)
