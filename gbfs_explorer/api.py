"""HTTP API for GBFS discovery, batch feed fetching and city lookups."""

from typing import Any, List, Optional

from fastapi import APIRouter, Header, Query
from pydantic import BaseModel

from .config import settings
from .domain import CatalogListing, CityGroup, CityResults, FeedRequest, FeedResult
from .errors import BadRequestError
from .service import DEFAULT_CLIENT_ID, build_service
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="api")

router = APIRouter()
SERVICE = build_service(settings)


class FeedBatchRequest(BaseModel):
    """Incoming batch of named feed URLs."""
    feeds: List[FeedRequest]


class MapConfigResponse(BaseModel):
    """Map-rendering configuration handed to the client."""
    mapbox_token: str


@router.get("/feeds", response_model=CatalogListing)
def list_feeds(force_refresh: bool = False, limit: Optional[int] = Query(default=None)):
    """Return processed catalog operators, served from cache when fresh."""
    listing = SERVICE.list_operators(force_refresh=force_refresh, limit=limit)
    logger.info(f"Returning {listing.total_count} systems (cache_hit={listing.cache_hit})")
    return listing


@router.post("/v2/gbfs-feeds", response_model=List[FeedResult])
def fetch_feeds(req: FeedBatchRequest):
    """Fetch every named URL concurrently; failures are reported per item."""
    return SERVICE.fetch_many(req.feeds)


@router.get("/proxy")
def proxy(target_url: Optional[str] = None) -> Any:
    """Fetch one JSON document on the caller's behalf."""
    if not target_url:
        raise BadRequestError("target_url parameter is required")
    logger.debug(f"Proxying {mask_url(target_url)}")
    return SERVICE.fetch_single(target_url)


@router.get("/config", response_model=MapConfigResponse)
def map_config():
    """Expose the map token, or a 500 when it is not configured."""
    return MapConfigResponse(mapbox_token=SERVICE.map_token())


@router.get("/cities", response_model=List[CityGroup])
def search_cities(q: str = ""):
    """City groups matching a partial name or location."""
    return SERVICE.search_cities(q)


@router.get("/cities/{city}/operators", response_model=CityResults)
def city_operators(city: str, x_client_id: str | None = Header(default=None)):
    """Run discovery, classification and status for every operator in a city."""
    return SERVICE.select_city(city, client_id=x_client_id or DEFAULT_CLIENT_ID)
