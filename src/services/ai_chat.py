"""
Assistant chat: answer one of a fixed set of questions about recent digests.
"""
import logging
from dataclasses import dataclass
from datetime import date as date_type, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from core.entities import today_utc
from services.database import Database
from services.event_log import EventLog
from services.llm import AllProvidersFailed, LLMProvider, complete_with_failover

logger = logging.getLogger(__name__)

CHAT_MAX_TOKENS = 1000
CHAT_TEMPERATURE = 0.3
CONTEXT_LIMIT = 50

# prompt key -> (days back, category filter, instruction)
PROMPTS: Dict[str, Tuple[int, Optional[str], str]] = {
    "daily": (
        1, None,
        "Provide a concise daily briefing highlighting the most important stories. Group by theme, not by category.",
    ),
    "weekly": (
        7, None,
        "Provide a weekly overview highlighting key themes, trends, and the most significant stories.",
    ),
    "monthly": (
        30, None,
        "Provide a monthly recap of major trends, significant releases, and the most impactful stories.",
    ),
    "top_ai": (
        7, "ai",
        "Provide a focused summary of the most significant AI developments, breakthroughs, and their practical implications.",
    ),
    "dev_updates": (
        7, "dev",
        "Provide a focused summary of important framework releases, tool updates, and web platform changes.",
    ),
    "sport": (
        7, "sport",
        "Provide a focused summary of Lincoln City FC news including match results, league position, team updates, and any transfer news.",
    ),
}

SYSTEM_PROMPT = """You are a concise AI assistant for a personal daily tech digest app. You summarize tech news, AI developments, developer tool updates, job opportunities, and Lincoln City FC football news for a senior Vue.js/full-stack developer based in the UK.

Rules:
- Use markdown formatting with headers, bullet points, and bold text
- Be direct and informative, no filler or pleasantries
- Keep responses under 800 words
- Highlight the most impactful stories first
- For tech news, note practical implications
- For Lincoln City, include match scores and league position when available"""


class ChatError(Exception):
    pass


@dataclass
class ChatAnswer:
    text: str
    item_count: int


def is_valid_prompt_key(key: str) -> bool:
    return key in PROMPTS


def build_user_prompt(key: str, items: Sequence[dict]) -> str:
    if not items:
        return "No digest items available for this time period. Let the user know briefly and suggest they check back later."

    lines = []
    for item in items:
        line = f"- **{item['title']}** [{item['category']}] ({item['source_name']}): {item['summary']}"
        if item.get("why_it_matters"):
            line += f" ({item['why_it_matters']})"
        lines.append(line)

    context = "\n".join(lines)
    return f"Here are the digest items:\n\n{context}\n\n{PROMPTS[key][2]}"


class AIChat:
    def __init__(self, database: Database, providers: Sequence[LLMProvider], event_log: EventLog):
        self.db = database
        self.providers = providers
        self.event_log = event_log

    async def digest_context(self, key: str, today: Optional[str] = None) -> List[dict]:
        days_back, category, _ = PROMPTS[key]
        today_date = date_type.fromisoformat(today or today_utc())
        cutoff = (today_date - timedelta(days=days_back)).isoformat()

        query = """
            SELECT i.title, i.summary, i.category, i.source_name, i.why_it_matters
            FROM items i JOIN digests d ON i.digest_id = d.id
            WHERE d.date >= ?
        """
        params: tuple = (cutoff,)
        if category:
            query += " AND i.category = ?"
            params += (category,)
        query += " ORDER BY d.date DESC, i.position ASC LIMIT ?"
        params += (CONTEXT_LIMIT,)

        rows = await self.db.fetchall(query, params)
        return [dict(row) for row in rows]

    async def answer(self, key: str) -> ChatAnswer:
        """
        Raises:
            ValueError: Unknown prompt key
            ChatError: No provider could answer
        """
        if not is_valid_prompt_key(key):
            raise ValueError(f"Unknown prompt key: {key}")

        items = await self.digest_context(key)
        try:
            completion, usages = await complete_with_failover(
                self.providers,
                SYSTEM_PROMPT,
                build_user_prompt(key, items),
                CHAT_MAX_TOKENS,
                CHAT_TEMPERATURE,
            )
        except AllProvidersFailed as e:
            await self.event_log.record_ai_usage(e.usages)
            await self.event_log.log_event("error", "ai", f"AI chat failed: {e}")
            raise ChatError(str(e)) from e

        await self.event_log.record_ai_usage(usages)
        await self.event_log.log_event(
            "info",
            "ai",
            f"AI chat ({usages[-1].provider}): {key} ({len(items)} items, {completion.latency_ms}ms)",
        )
        return ChatAnswer(text=completion.text, item_count=len(items))
