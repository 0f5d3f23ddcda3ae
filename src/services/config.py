"""
Loads and handles config from config.yml
API keys and the admin secret (ADMIN_KEY, GEMINI_API_KEY, ANTHROPIC_API_KEY) are loaded from .env
"""
import os
from typing import List, Dict, Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, model_validator

DEFAULT_FRESHNESS_DAYS = 14


class SourceConfig(BaseModel):
    """Configuration for a single ingestion source."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: str  # rss, reddit, hn, github, bluesky, api, scrape
    url: str
    category: str  # ai, dev, jobs, sport
    enabled: bool = True


class Config(BaseModel):
    """
    Complete runtime configuration.
    Built once at process start and passed explicitly to the pipeline stages.
    """
    model_config = ConfigDict(frozen=True)

    # Core
    DATABASE_PATH: str = "data/digest.db"
    ADMIN_KEY: Optional[str] = None

    # LLM providers, tried in order: Gemini, Anthropic, Ollama
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.0-flash"
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_MODEL: str = "claude-haiku-4-5-20251001"
    OLLAMA_BASE_URL: Optional[str] = None
    OLLAMA_MODEL: str = "llama3.1:8b"

    # Pipeline
    REQUEST_TIMEOUT: float = 15.0
    DEDUP_DAYS: int = 7
    MAX_ITEMS_PER_SOURCE: Optional[int] = None
    ENRICH_INLINE: bool = False
    ENRICH_BATCH_SIZE: int = 10
    SCHEDULE_HOUR: int = 7

    CORS_ORIGINS: List[str] = []

    category_limits: Dict[str, int] = {}
    freshness_thresholds: Dict[str, int] = {}
    sources: List[SourceConfig] = []

    @model_validator(mode="after")
    def _check_sources(self) -> "Config":
        seen = set()
        for source in self.sources:
            if source.id in seen:
                raise ValueError(f"Duplicate source id: {source.id}")
            seen.add(source.id)
            if source.category not in self.category_limits:
                raise ValueError(f"No category limit for '{source.category}' (source {source.id})")
            if source.category not in self.freshness_thresholds:
                raise ValueError(f"No freshness threshold for '{source.category}' (source {source.id})")
        return self

    def source_categories(self) -> Dict[str, str]:
        """Map of source id -> category."""
        return {source.id: source.category for source in self.sources}

    def source_names(self) -> Dict[str, str]:
        return {source.id: source.name for source in self.sources}

    def freshness_days(self, category: Optional[str]) -> int:
        if category is None:
            return DEFAULT_FRESHNESS_DAYS
        return self.freshness_thresholds.get(category, DEFAULT_FRESHNESS_DAYS)


def _bool(value: str | bool) -> bool:
    """Convert string or bool to boolean."""
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "yes", "on")


def _get_config_path() -> str:
    """Get the path to config.yml, handling different working directories."""
    env_path = os.getenv("FEED_DIGEST_CONFIG")
    if env_path:
        return env_path

    # Try relative path first
    if os.path.exists('resources/config.yml'):
        return 'resources/config.yml'

    # Try from project root
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    config_path = os.path.join(project_root, 'resources', 'config.yml')
    if os.path.exists(config_path):
        return config_path

    raise FileNotFoundError("Cannot find resources/config.yml")


def _parse_sources(data: List[Dict[str, Any]]) -> List[SourceConfig]:
    """Parse the static source registry from YAML data."""
    sources = []
    for src in data:
        sources.append(SourceConfig(
            id=src["id"],
            name=src.get("name", src["id"]),
            type=src.get("type", "rss"),
            url=src["url"],
            category=src["category"],
            enabled=_bool(src.get("enabled", True)),
        ))
    return sources


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from config.yml and secrets from .env."""
    # Load .env for sensitive credentials
    load_dotenv()

    config_path = path or _get_config_path()

    with open(config_path, 'r') as file:
        config = yaml.safe_load(file) or {}

    max_per_source = config.get("MAX_ITEMS_PER_SOURCE")

    return Config(
        DATABASE_PATH=os.getenv("DATABASE_PATH", config.get("DATABASE_PATH", "data/digest.db")),
        ADMIN_KEY=os.getenv("ADMIN_KEY"),

        GEMINI_API_KEY=os.getenv("GEMINI_API_KEY"),
        GEMINI_MODEL=config.get("GEMINI_MODEL", "gemini-2.0-flash"),
        ANTHROPIC_API_KEY=os.getenv("ANTHROPIC_API_KEY"),
        ANTHROPIC_MODEL=config.get("ANTHROPIC_MODEL", "claude-haiku-4-5-20251001"),
        OLLAMA_BASE_URL=os.getenv("OLLAMA_BASE_URL"),
        OLLAMA_MODEL=config.get("OLLAMA_MODEL", "llama3.1:8b"),

        REQUEST_TIMEOUT=float(config.get("REQUEST_TIMEOUT", 15)),
        DEDUP_DAYS=int(config.get("DEDUP_DAYS", 7)),
        MAX_ITEMS_PER_SOURCE=int(max_per_source) if max_per_source else None,
        ENRICH_INLINE=_bool(config.get("ENRICH_INLINE", False)),
        ENRICH_BATCH_SIZE=int(config.get("ENRICH_BATCH_SIZE", 10)),
        SCHEDULE_HOUR=int(config.get("SCHEDULE_HOUR", 7)),

        CORS_ORIGINS=config.get("CORS_ORIGINS", []),

        category_limits=config.get("category_limits", {}),
        freshness_thresholds=config.get("freshness_thresholds", {}),
        sources=_parse_sources(config.get("sources", [])),
    )


def get_enabled_sources(config: Config) -> List[SourceConfig]:
    """Get only enabled sources from the registry."""
    return [src for src in config.sources if src.enabled]
