"""Long-lived service object wiring caches, credentials, fetchers and the pipeline."""
from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from gbfs_explorer import config
from gbfs_explorer.cache import TTLCache
from gbfs_explorer.data_sources import CatalogClient, FeedFetcher, TokenManager
from gbfs_explorer.domain import CatalogListing, CityGroup, CityResults, FeedRequest, FeedResult
from gbfs_explorer.errors import CityNotFoundError, ConfigurationError, StaleSelectionError
from gbfs_explorer.pipeline import OperatorPipeline, sort_results, total_fleet
from gbfs_explorer.systems import find_city, group_systems_by_city, search_systems
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="service")

DEFAULT_CLIENT_ID = "anonymous"


@dataclass(frozen=True)
class SelectionToken:
    """Handle for one city selection by one client."""
    client_id: str
    city: str
    generation: int


class SelectionTracker:
    """Remember the latest city selection per client so stale runs can be discarded."""

    def __init__(self) -> None:
        self._active: Dict[str, SelectionToken] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def begin(self, client_id: str, city: str) -> SelectionToken:
        """Record a new selection, superseding any earlier one for the client."""
        with self._lock:
            token = SelectionToken(client_id=client_id, city=city, generation=next(self._counter))
            self._active[client_id] = token
            return token

    def is_current(self, token: SelectionToken) -> bool:
        with self._lock:
            return self._active.get(token.client_id) == token

    def active_city(self, client_id: str) -> Optional[str]:
        with self._lock:
            token = self._active.get(client_id)
            return token.city if token else None

    def finish(self, token: SelectionToken) -> None:
        """Forget a finished selection unless a newer one replaced it."""
        with self._lock:
            if self._active.get(token.client_id) == token:
                del self._active[token.client_id]


class ExplorerService:
    """Single owner of the process-wide caches, token and upstream clients."""

    def __init__(
        self,
        settings: config.Settings,
        *,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        session = session or requests.Session()
        self.token_manager = TokenManager(
            settings.mobility_database_refresh_token,
            settings.mobility_database_url,
            session=session,
            clock=wall_clock,
            buffer_seconds=settings.token_refresh_buffer_seconds,
            default_expires_in=settings.token_default_expires_in,
            timeout=settings.upstream_timeout_seconds,
            user_agent=settings.user_agent,
        )
        self.catalog = CatalogClient(
            self.token_manager,
            settings.mobility_database_url,
            session=session,
            page_limit=settings.catalog_page_limit,
            cache=TTLCache(settings.catalog_cache_seconds, clock=clock, name="catalog"),
            timeout=settings.upstream_timeout_seconds,
            user_agent=settings.user_agent,
            wall_clock=wall_clock,
        )
        self.fetcher = FeedFetcher(
            session=session,
            timeout=settings.feed_timeout_seconds,
            single_timeout=settings.proxy_timeout_seconds,
            cache=TTLCache(settings.feed_cache_ttl_seconds, clock=clock, name="feed_fetch"),
            excerpt_chars=settings.error_excerpt_chars,
            user_agent=settings.user_agent,
        )
        self.pipeline = OperatorPipeline(self.fetcher)
        self.selections = SelectionTracker()

    def list_operators(
        self,
        data_type: Optional[str] = None,
        force_refresh: bool = False,
        limit: Optional[int] = None,
    ) -> CatalogListing:
        return self.catalog.list_operators(
            data_type or self.settings.catalog_data_type,
            force_refresh=force_refresh,
            limit=limit,
        )

    def fetch_many(self, items: Sequence[FeedRequest]) -> List[FeedResult]:
        return self.fetcher.fetch_many(items)

    def fetch_single(self, url: str) -> Any:
        return self.fetcher.fetch_single(url)

    def search_cities(self, query: str) -> List[CityGroup]:
        """City groups whose operators match the query by name or location."""
        if len((query or "").strip()) < self.settings.min_search_chars:
            return []
        systems = self.list_operators().systems
        return group_systems_by_city(search_systems(systems, query.strip()))

    def select_city(self, city: str, client_id: str = DEFAULT_CLIENT_ID) -> CityResults:
        """Run the pipeline for every operator in a city.

        If the same client selects another city before this run finishes, the
        run's results are discarded rather than returned.
        """
        group = find_city(self.list_operators().systems, city)
        if group is None:
            raise CityNotFoundError(f"No operators found for city '{city}'")

        token = self.selections.begin(client_id, group.city)
        logger.info("Running pipeline for %s (%d operators)", group.city, len(group.operators))
        try:
            results = self.pipeline.run(group.operators)
            if not self.selections.is_current(token):
                logger.info("Discarding results for %s: superseded by %s", group.city,
                            self.selections.active_city(client_id))
                raise StaleSelectionError(f"Selection of '{group.city}' was superseded by a newer selection")
        finally:
            self.selections.finish(token)

        return CityResults(
            city=group.city,
            country_code=group.country_code,
            results=sort_results(results),
            total_vehicles=total_fleet(results),
        )

    def map_token(self) -> str:
        """Opaque token handed to the map-rendering collaborator."""
        if not self.settings.mapbox_access_token:
            raise ConfigurationError("Mapbox token not configured")
        return self.settings.mapbox_access_token


def build_service(settings: config.Settings | None = None) -> ExplorerService:
    """Instantiate the service from configuration."""
    settings = settings or config.settings
    logger.info(
        "Building explorer service",
        extra={"catalog_url": settings.mobility_database_url, "feed_timeout": settings.feed_timeout_seconds},
    )
    return ExplorerService(settings)
