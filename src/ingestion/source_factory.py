"""
Source Factory - Creates ingestion adapters from the source registry.

Adapters are looked up by source id first, then by source type.
"""
import logging
from typing import Dict, Type

import httpx

from ingestion.arbeitnow import ArbeitnowAdapter
from ingestion.base import SourceAdapter
from ingestion.bluesky import BlueskyAdapter
from ingestion.feed import FeedAdapter
from ingestion.himalayas import HimalayasAdapter
from ingestion.hn_hiring import HNHiringAdapter
from ingestion.jobicy import JobicyAdapter
from ingestion.remoteok import RemoteOKAdapter
from ingestion.scrape import ScrapeAdapter
from services.config import SourceConfig

logger = logging.getLogger(__name__)

ADAPTERS_BY_ID: Dict[str, Type[SourceAdapter]] = {
    "remoteok": RemoteOKAdapter,
    "himalayas": HimalayasAdapter,
    "arbeitnow": ArbeitnowAdapter,
    "hn-hiring": HNHiringAdapter,
}

ADAPTERS_BY_TYPE: Dict[str, Type[SourceAdapter]] = {
    "rss": FeedAdapter,
    "reddit": FeedAdapter,
    "hn": FeedAdapter,
    "github": FeedAdapter,
    "api": JobicyAdapter,
    "bluesky": BlueskyAdapter,
    "scrape": ScrapeAdapter,
}


def resolve_adapter_class(source: SourceConfig) -> Type[SourceAdapter]:
    """
    Pick the adapter class for a source.

    Raises:
        ValueError: If neither the id nor the type is registered
    """
    adapter_cls = ADAPTERS_BY_ID.get(source.id)
    if adapter_cls is not None:
        return adapter_cls

    adapter_cls = ADAPTERS_BY_TYPE.get(source.type.lower())
    if adapter_cls is None:
        raise ValueError(f"Unknown source type: {source.type}")
    return adapter_cls


def create_adapter(source: SourceConfig, client: httpx.AsyncClient) -> SourceAdapter:
    """
    Create a source adapter bound to the shared HTTP client.

    Args:
        source: Configuration for the source
        client: Shared async HTTP client

    Returns:
        Configured SourceAdapter instance

    Raises:
        ValueError: If source type is unknown
    """
    adapter = resolve_adapter_class(source)(client)
    logger.debug(f"Created {type(adapter).__name__} for {source.id}")
    return adapter
