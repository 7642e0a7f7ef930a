"""Paginated client for the Mobility Database feed catalog."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from gbfs_explorer.cache import TTLCache
from gbfs_explorer.data_sources.locations import infer_location
from gbfs_explorer.domain import CatalogListing, OperatorRecord
from gbfs_explorer.data_sources.credentials import CATALOG_FAILURE_STATUS, TokenManager
from gbfs_explorer.errors import UpstreamError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="data_sources/catalog")

FEEDS_PATH = "/v1/feeds"
DEFAULT_PAGE_LIMIT = 1000
DEFAULT_CACHE_SECONDS = 6 * 3600


def _page_entries(payload: Any) -> List[Dict[str, Any]]:
    """Extract the list of feed entries from one catalog page."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("results", "feeds", "data"):
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return []


def to_operator_record(feed: Dict[str, Any]) -> OperatorRecord:
    """Convert one raw catalog entry into an OperatorRecord."""
    source_info = feed.get("source_info") or {}
    producer_url = source_info.get("producer_url") or ""
    provider = feed.get("provider") or ""
    location, country_code = infer_location(provider, producer_url)
    return OperatorRecord(
        system_id=str(feed["id"]),
        name=provider,
        location=location,
        country_code=country_code,
        discovery_url=producer_url,
        provider=provider,
        status=feed.get("status") or "unknown",
        entity_type=feed.get("entity_type"),
        features=list(feed.get("features") or []),
        note=feed.get("note") or "",
    )


def process_feeds(feeds: List[Dict[str, Any]], data_type: str = "gbfs") -> List[OperatorRecord]:
    """Keep entries of the requested data type and convert them to records."""
    records: List[OperatorRecord] = []
    for feed in feeds:
        if not isinstance(feed, dict) or feed.get("data_type") != data_type:
            continue
        if not feed.get("id"):
            logger.debug("Skipping catalog entry without id: %s", feed.get("provider"))
            continue
        records.append(to_operator_record(feed))
    return records


class CatalogClient:
    """List operators from the catalog, page by page, with a long-lived cache."""

    def __init__(
        self,
        token_manager: TokenManager,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        page_limit: int = DEFAULT_PAGE_LIMIT,
        cache: Optional[TTLCache[CatalogListing]] = None,
        timeout: float = 30.0,
        user_agent: str = "GBFSExplorer/1.0",
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.token_manager = token_manager
        self.feeds_url = f"{base_url.rstrip('/')}{FEEDS_PATH}"
        self.session = session or requests.Session()
        self.page_limit = page_limit
        self.cache = cache if cache is not None else TTLCache(DEFAULT_CACHE_SECONDS, name="catalog")
        self.timeout = timeout
        self.user_agent = user_agent
        self._wall_clock = wall_clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._wall_clock(), tz=timezone.utc)

    def fetch_all_feeds(self, data_type: str = "gbfs") -> List[Dict[str, Any]]:
        """Request successive pages until a short or empty page; raise on any failure."""
        token = self.token_manager.get_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "User-Agent": self.user_agent,
        }
        all_feeds: List[Dict[str, Any]] = []
        offset = 0

        while True:
            params = {"data_type": data_type, "limit": self.page_limit, "offset": offset}
            try:
                resp = self.session.get(self.feeds_url, params=params, headers=headers, timeout=self.timeout)
            except requests.exceptions.RequestException as exc:
                raise UpstreamError(f"Failed to fetch feeds: {exc}", status_code=CATALOG_FAILURE_STATUS) from exc

            if not resp.ok:
                raise UpstreamError(
                    f"Failed to fetch feeds: upstream returned {resp.status_code}",
                    status_code=CATALOG_FAILURE_STATUS,
                )

            try:
                page = _page_entries(resp.json())
            except ValueError as exc:
                raise UpstreamError("Catalog returned non-JSON page", status_code=CATALOG_FAILURE_STATUS) from exc

            logger.debug("Catalog page offset=%d returned %d entries", offset, len(page))
            if not page:
                break
            all_feeds.extend(page)
            if len(page) < self.page_limit:
                break
            offset += self.page_limit

        logger.info("Fetched %d catalog entries for data_type=%s", len(all_feeds), data_type)
        return all_feeds

    def list_operators(
        self,
        data_type: str = "gbfs",
        force_refresh: bool = False,
        limit: Optional[int] = None,
    ) -> CatalogListing:
        """Return processed operators, served from cache unless stale or forced."""
        entry = None if force_refresh else self.cache.get(data_type)
        if entry is not None:
            systems = entry.systems
            cache_hit = True
            last_updated = entry.last_updated
        else:
            systems = process_feeds(self.fetch_all_feeds(data_type), data_type)
            last_updated = self._now()
            self.cache.set(
                data_type,
                CatalogListing(systems=systems, total_count=len(systems), last_updated=last_updated, cache_hit=False),
            )
            cache_hit = False

        if limit and limit > 0:
            systems = systems[:limit]
        return CatalogListing(
            systems=systems,
            total_count=len(systems),
            last_updated=last_updated,
            cache_hit=cache_hit,
        )
