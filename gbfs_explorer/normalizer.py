"""Convert raw GBFS status documents into canonical vehicle/station counts.

Station feeds (`station_status`) and vehicle feeds (`vehicle_status`,
`free_bike_status`) have different shapes; both are reduced to a
NormalizedStatus. A missing or non-array top-level list yields None so callers
can tell "no data" from "zero vehicles". Absent numeric fields contribute zero.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from gbfs_explorer.classification import STATION_STATUS_FEED, VEHICLE_FEED_NAMES
from gbfs_explorer.domain import NormalizedStatus
from gbfs_explorer.timestamps import parse_timestamp, parse_ttl
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="normalizer")


def _count(value: Any) -> int:
    """Non-negative integer contribution of a counter; non-numbers and non-finite floats count as zero."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(0, int(value))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _payload(doc: Any) -> Optional[Dict[str, Any]]:
    """Return the body of a GBFS envelope, or the document itself if bare."""
    if not isinstance(doc, dict):
        return None
    inner = doc.get("data")
    return inner if isinstance(inner, dict) else doc


def _station_available(station: Dict[str, Any]) -> int:
    """Available vehicles at one station, preferring the itemized per-type list."""
    itemized = station.get("vehicle_types_available")
    if isinstance(itemized, list):
        return sum(_count(vt.get("count")) for vt in itemized if isinstance(vt, dict))

    available = 0
    if _is_number(station.get("num_bikes_available")):
        available += _count(station["num_bikes_available"])
    elif _is_number(station.get("num_vehicles_available")):
        available += _count(station["num_vehicles_available"])
    available += _count(station.get("num_ebikes_available"))
    return available


def _station_disabled(station: Dict[str, Any]) -> int:
    return _count(station.get("num_bikes_disabled")) + _count(station.get("num_vehicles_disabled"))


def normalize_station_status(doc: Any, *, source_feed: str = STATION_STATUS_FEED) -> Optional[NormalizedStatus]:
    """Sum availability across the stations of a station_status document."""
    payload = _payload(doc)
    stations = payload.get("stations") if payload else None
    if not isinstance(stations, list):
        logger.warning("station_status has no stations array")
        return None

    available = 0
    disabled = 0
    docks = 0
    station_ids = set()
    anonymous = 0
    for station in stations:
        if not isinstance(station, dict):
            continue
        station_id = station.get("station_id")
        if station_id is None:
            anonymous += 1
        else:
            station_ids.add(str(station_id))
        available += _station_available(station)
        disabled += _station_disabled(station)
        docks += _count(station.get("num_docks_available"))

    return NormalizedStatus(
        total_vehicles=available + disabled,
        available_vehicles=available,
        station_count=len(station_ids) + anonymous,
        available_docks=docks,
        last_updated=parse_timestamp(doc.get("last_updated")),
        ttl_seconds=parse_ttl(doc.get("ttl")),
        source_feed=source_feed,
    )


def _vehicle_list(payload: Dict[str, Any]) -> Optional[List[Any]]:
    """Return `vehicles` or legacy `bikes`; the first key present wins."""
    for key in ("vehicles", "bikes"):
        value = payload.get(key)
        if value is not None:
            return value if isinstance(value, list) else None
    return None


def _is_available(vehicle: Any) -> bool:
    """Only vehicles explicitly marked not disabled and not reserved count."""
    return (
        isinstance(vehicle, dict)
        and vehicle.get("is_disabled") is False
        and vehicle.get("is_reserved") is False
    )


def normalize_vehicle_status(doc: Any, *, source_feed: str = "vehicle_status") -> Optional[NormalizedStatus]:
    """Count vehicles in a vehicle_status / free_bike_status document."""
    payload = _payload(doc)
    vehicles = _vehicle_list(payload) if payload else None
    if vehicles is None:
        logger.warning("%s has neither a vehicles nor a bikes array", source_feed)
        return None

    return NormalizedStatus(
        total_vehicles=len(vehicles),
        available_vehicles=sum(1 for v in vehicles if _is_available(v)),
        last_updated=parse_timestamp(doc.get("last_updated")),
        ttl_seconds=parse_ttl(doc.get("ttl")),
        source_feed=source_feed,
    )


def normalize_status(doc: Any, feed_name: str) -> Optional[NormalizedStatus]:
    """Dispatch on the status feed name."""
    if feed_name == STATION_STATUS_FEED:
        return normalize_station_status(doc)
    if feed_name in VEHICLE_FEED_NAMES:
        return normalize_vehicle_status(doc, source_feed=feed_name)
    logger.warning("No normalizer for feed '%s'", feed_name)
    return None
