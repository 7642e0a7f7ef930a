"""Domain vocabulary and schemas for catalog records, verdicts and results.

This module defines the contract between the catalog client, the feed
pipeline and the HTTP layer: enums and Pydantic models for the payloads that
flow through the system. No fetching or interpretation logic lives here.
Python code uses snake_case attributes; JSON uses camelCase aliases.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Base model that serializes with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OperatorType(str, Enum):
    """Deployment model of a mobility operator."""
    STATION_BASED = "station_based"
    FREE_FLOATING = "free_floating"
    UNKNOWN = "unknown"


class ResultState(str, Enum):
    """Lifecycle of an operator result within one city run."""
    LOADING = "loading"
    SUCCESS = "success"
    PARTIAL_ERROR = "partial_error"


class ErrorKind(str, Enum):
    """Coarse category of a user-facing error explanation."""
    NETWORK = "network"
    SERVER = "server"
    TIMEOUT = "timeout"
    DATA = "data"
    UNKNOWN = "unknown"


class OperatorRecord(_CamelModel):
    """One advertised mobility system from the upstream catalog."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    system_id: str
    name: str
    location: str
    country_code: str
    discovery_url: str
    provider: Optional[str] = None
    status: str = "unknown"
    entity_type: Optional[Any] = None
    features: List[str] = Field(default_factory=list)
    note: str = ""


class CatalogListing(_CamelModel):
    """Catalog response: processed systems plus cache metadata."""
    systems: List[OperatorRecord]
    total_count: int
    last_updated: datetime
    cache_hit: bool


class FeedRequest(BaseModel):
    """A named URL to fetch."""
    name: str
    url: str


class FeedResult(BaseModel):
    """Outcome of one item in a batch fetch; exactly one of data/error is set."""
    name: str
    data: Optional[Any] = None
    error: Optional[str] = None


class ClassificationVerdict(_CamelModel):
    """Deployment-type verdict plus the evidence it was derived from."""
    operator_type: OperatorType
    feeds_present: List[str] = Field(default_factory=list)
    scooter_override: bool = False
    vehicle_feed: Optional[str] = None
    hybrid: bool = False
    description: str = ""


class NormalizedStatus(_CamelModel):
    """Canonical availability snapshot computed from one status feed."""
    total_vehicles: int
    available_vehicles: int
    station_count: Optional[int] = None
    available_docks: Optional[int] = None
    last_updated: Optional[datetime] = None
    ttl_seconds: Optional[int] = None
    source_feed: str


class FriendlyError(_CamelModel):
    """User-facing explanation of a technical failure."""
    title: str
    message: str
    kind: ErrorKind
    suggestion: Optional[str] = None


class OperatorResult(_CamelModel):
    """Externally visible unit: operator, latest verdict, latest status, errors."""
    operator: OperatorRecord
    state: ResultState = ResultState.LOADING
    resolved_name: str
    feeds: Dict[str, str] = Field(default_factory=dict)
    verdict: Optional[ClassificationVerdict] = None
    status: Optional[NormalizedStatus] = None
    discovery_error: Optional[str] = None
    status_error: Optional[str] = None
    operator_url: Optional[str] = None
    operator_email: Optional[str] = None
    form_factors: List[str] = Field(default_factory=list)
    primary_form_factor: Optional[str] = None
    friendly_error: Optional[FriendlyError] = None

    @computed_field  # type: ignore[misc]
    @property
    def total_vehicles(self) -> Optional[int]:
        """Total deployed fleet, or None when no status is available."""
        return self.status.total_vehicles if self.status else None

    @property
    def has_error(self) -> bool:
        """True if discovery or status failed for this operator."""
        return bool(self.discovery_error or self.status_error)


class CityGroup(_CamelModel):
    """Catalog operators sharing one inferred city."""
    city: str
    country_code: str
    operators: List[OperatorRecord] = Field(default_factory=list)
    system_ids: List[str] = Field(default_factory=list)


class CityResults(_CamelModel):
    """Finished run for one city selection."""
    city: str
    country_code: str
    results: List[OperatorResult]
    total_vehicles: Optional[int] = None
