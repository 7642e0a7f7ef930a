"""Deterministic operator classification from published GBFS feeds.

Rules, in order:

1. Scooter override: any declared vehicle type whose form factor contains
   "scooter" makes the operator free-floating, regardless of other feeds.
2. Prefer stations: `station_information` and `station_status` together make
   the operator station-based, even if vehicle feeds are also published.
3. Free-floating: `vehicle_status` (GBFS 3.0+) or `free_bike_status` (2.x).
4. Otherwise unknown.

The classifier is a pure function; the pipeline calls it once without
vehicle-type evidence and again once `vehicle_types` has been fetched.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Tuple

from gbfs_explorer.domain import ClassificationVerdict, OperatorType
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="classification")

STATION_FEED_NAMES: Tuple[str, ...] = ("station_information", "station_status")
# preferred first
VEHICLE_FEED_NAMES: Tuple[str, ...] = ("vehicle_status", "free_bike_status")
STATION_STATUS_FEED = "station_status"
SCOOTER = "scooter"
BICYCLE = "bicycle"


def _vehicle_types_list(vehicle_types: Any) -> List[Any]:
    """Return the vehicle_types array from a wrapped or bare document."""
    if not isinstance(vehicle_types, dict):
        return []
    content = vehicle_types.get("data") if isinstance(vehicle_types.get("data"), dict) else vehicle_types
    types = content.get("vehicle_types")
    return types if isinstance(types, list) else []


def extract_form_factors(vehicle_types: Any) -> List[str]:
    """List the declared form factors, skipping entries without one."""
    return [
        vt["form_factor"]
        for vt in _vehicle_types_list(vehicle_types)
        if isinstance(vt, dict) and isinstance(vt.get("form_factor"), str) and vt["form_factor"]
    ]


def has_scooters(vehicle_types: Any) -> bool:
    """True if any declared form factor is a scooter variant."""
    return any(SCOOTER in ff for ff in extract_form_factors(vehicle_types))


def primary_form_factor(form_factors: List[str]) -> Optional[str]:
    """Collapse declared form factors to the one used for display."""
    if any(SCOOTER in ff for ff in form_factors):
        return SCOOTER
    if any(BICYCLE in ff for ff in form_factors):
        return BICYCLE
    return None


def has_station_feeds(feeds: Mapping[str, str]) -> bool:
    return all(feeds.get(name) for name in STATION_FEED_NAMES)


def vehicle_feed_name(feeds: Mapping[str, str]) -> Optional[str]:
    """Return the first available vehicle feed, preferring vehicle_status."""
    for name in VEHICLE_FEED_NAMES:
        if feeds.get(name):
            return name
    return None


def is_hybrid_system(feeds: Mapping[str, str]) -> bool:
    """True if the operator publishes both station and vehicle feeds."""
    return has_station_feeds(feeds) and vehicle_feed_name(feeds) is not None


def describe_classification(operator_type: OperatorType, feeds: Mapping[str, str]) -> str:
    """Human-readable description of a verdict."""
    if operator_type == OperatorType.STATION_BASED:
        if is_hybrid_system(feeds):
            return "Station-based with dockless vehicles (hybrid)"
        return "Station-based (docked bikes)"
    if operator_type == OperatorType.FREE_FLOATING:
        version = "3.0+" if vehicle_feed_name(feeds) == "vehicle_status" else "2.x"
        return f"Free-floating (dockless, GBFS {version})"
    return "Unknown system type"


def classify_operator(
    feeds: Mapping[str, str],
    vehicle_types: Any = None,
    operator_name: str = "Unknown",
) -> ClassificationVerdict:
    """Assign a deployment-type verdict from feed names and optional vehicle types."""
    feeds = feeds or {}
    present = sorted(feeds.keys())
    vehicle_feed = vehicle_feed_name(feeds)
    hybrid = is_hybrid_system(feeds)

    if vehicle_types is not None and has_scooters(vehicle_types):
        logger.debug("%s: scooter vehicle types, forcing free_floating", operator_name)
        operator_type = OperatorType.FREE_FLOATING
        scooter_override = True
    elif has_station_feeds(feeds):
        operator_type = OperatorType.STATION_BASED
        scooter_override = False
    elif vehicle_feed:
        operator_type = OperatorType.FREE_FLOATING
        scooter_override = False
    else:
        logger.info("%s: unable to classify, available feeds: %s", operator_name, ", ".join(present) or "none")
        operator_type = OperatorType.UNKNOWN
        scooter_override = False

    return ClassificationVerdict(
        operator_type=operator_type,
        feeds_present=present,
        scooter_override=scooter_override,
        vehicle_feed=vehicle_feed,
        hybrid=hybrid,
        description=describe_classification(operator_type, feeds),
    )


def reclassify(
    previous: ClassificationVerdict,
    feeds: Mapping[str, str],
    vehicle_types: Any,
    operator_name: str = "Unknown",
) -> ClassificationVerdict:
    """Re-run classification with vehicle-type evidence.

    A scooter-forced free_floating verdict is never given up.
    """
    verdict = classify_operator(feeds, vehicle_types, operator_name)
    if previous.scooter_override and not verdict.scooter_override:
        return previous
    if verdict.operator_type != previous.operator_type:
        logger.info(
            "%s reclassified from %s to %s",
            operator_name,
            previous.operator_type.value,
            verdict.operator_type.value,
        )
    return verdict


def status_feed_for(operator_type: OperatorType, feeds: Mapping[str, str]) -> Optional[Tuple[str, str]]:
    """Return (feed_name, url) of the status feed matching a verdict, if published."""
    if operator_type == OperatorType.STATION_BASED and feeds.get(STATION_STATUS_FEED):
        return STATION_STATUS_FEED, feeds[STATION_STATUS_FEED]
    if operator_type == OperatorType.FREE_FLOATING:
        name = vehicle_feed_name(feeds)
        if name:
            return name, feeds[name]
    return None
