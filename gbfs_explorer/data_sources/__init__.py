"""Upstream clients: catalog credentials, catalog listing and GBFS feed fetching."""

from .catalog import CatalogClient, process_feeds
from .credentials import TokenManager
from .feed_fetcher import FeedFetcher, is_json_content_type
from .locations import CITY_PATTERNS, UNKNOWN_LOCATION, infer_location

__all__ = [
    "CatalogClient",
    "process_feeds",
    "TokenManager",
    "FeedFetcher",
    "is_json_content_type",
    "CITY_PATTERNS",
    "UNKNOWN_LOCATION",
    "infer_location",
]
