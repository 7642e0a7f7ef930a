"""Phased discovery -> classification -> status pipeline for the operators of one city.

Each phase fans out over every operator that needs it, then waits for the
whole batch before the next phase starts:

1. discovery      fetch every gbfs.json, parse the feed map
2. provisional    classify from feed names, queue optional and status feeds
3. optional       fetch system_information / vehicle_types
4. reclassify     re-run classification with vehicle types; swap status feed if needed
5. status         fetch and normalize the status feed matching the final verdict
6. assembly       build immutable OperatorResults

A failure for one operator only marks that operator's result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from gbfs_explorer.classification import (
    classify_operator,
    extract_form_factors,
    primary_form_factor,
    reclassify,
    status_feed_for,
)
from gbfs_explorer.discovery import parse_discovery
from gbfs_explorer.domain import (
    ClassificationVerdict,
    FeedRequest,
    FeedResult,
    NormalizedStatus,
    OperatorRecord,
    OperatorResult,
    OperatorType,
    ResultState,
)
from gbfs_explorer.friendly_errors import create_friendly_error
from gbfs_explorer.normalizer import normalize_status
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="pipeline")

FEED_KEY_SEPARATOR = "::"
SYSTEM_INFORMATION = "system_information"
VEHICLE_TYPES = "vehicle_types"
OPTIONAL_FEEDS: Tuple[str, ...] = (SYSTEM_INFORMATION, VEHICLE_TYPES)


class BatchFetcher(Protocol):
    """Anything that can fetch a batch of named URLs with per-item errors."""

    def fetch_many(self, items: Sequence[FeedRequest]) -> List[FeedResult]:
        ...


def feed_key(system_id: str, feed_name: str) -> str:
    return f"{system_id}{FEED_KEY_SEPARATOR}{feed_name}"


def split_feed_key(key: str) -> Tuple[str, str]:
    """Inverse of feed_key; system ids may themselves contain the separator."""
    system_id, _sep, feed_name = key.rpartition(FEED_KEY_SEPARATOR)
    return system_id, feed_name


def _content(document: Any) -> Dict[str, Any]:
    """Body of a GBFS envelope, or the document itself."""
    if not isinstance(document, dict):
        return {}
    inner = document.get("data")
    return inner if isinstance(inner, dict) else document


@dataclass
class _OperatorState:
    """Mutable per-operator working state for one run."""
    operator: OperatorRecord
    resolved_name: str
    feeds: Dict[str, str] = field(default_factory=dict)
    verdict: Optional[ClassificationVerdict] = None
    vehicle_types: Any = None
    form_factors: List[str] = field(default_factory=list)
    operator_url: Optional[str] = None
    operator_email: Optional[str] = None
    status: Optional[NormalizedStatus] = None
    discovery_error: Optional[str] = None
    status_error: Optional[str] = None

    @property
    def system_id(self) -> str:
        return self.operator.system_id


class OperatorPipeline:
    """Run the full phased pipeline for a set of operators."""

    def __init__(self, fetcher: BatchFetcher) -> None:
        self.fetcher = fetcher

    def _fetch(self, requests: List[FeedRequest]) -> Dict[str, FeedResult]:
        """Fetch a batch and index results by request name, not arrival order."""
        if not requests:
            return {}
        return {result.name: result for result in self.fetcher.fetch_many(requests)}

    # -- phase 1 ---------------------------------------------------------------

    def _discover(self, states: Dict[str, _OperatorState]) -> List[_OperatorState]:
        """Fetch and parse every discovery document; return operators with feeds."""
        requests = []
        for state in states.values():
            if state.operator.discovery_url:
                requests.append(FeedRequest(name=state.system_id, url=state.operator.discovery_url))
            else:
                state.discovery_error = "No discovery URL published for this operator."

        results = self._fetch(requests)
        active: List[_OperatorState] = []
        for request in requests:
            state = states[request.name]
            result = results.get(request.name)
            if result is None or result.error or result.data is None:
                state.discovery_error = (result.error if result else None) or "Failed to fetch or parse gbfs.json."
                continue
            feeds, name = parse_discovery(result.data, state.operator.name)
            state.resolved_name = name
            state.feeds = feeds
            if not feeds:
                state.discovery_error = "Discovery failed: No valid feeds found in gbfs.json."
                continue
            active.append(state)

        logger.info("Discovery finished: %d of %d operators have feeds", len(active), len(states))
        return active

    # -- phase 2 ---------------------------------------------------------------

    def _classify(self, active: List[_OperatorState]) -> Tuple[List[FeedRequest], Dict[str, FeedRequest]]:
        """Provisional classification; queue optional feeds and the matching status feed."""
        optional: List[FeedRequest] = []
        status_queue: Dict[str, FeedRequest] = {}
        for state in active:
            state.verdict = classify_operator(state.feeds, operator_name=state.resolved_name)
            for feed_name in OPTIONAL_FEEDS:
                if state.feeds.get(feed_name):
                    optional.append(FeedRequest(name=feed_key(state.system_id, feed_name), url=state.feeds[feed_name]))
            self._queue_status(state, status_queue)
        return optional, status_queue

    @staticmethod
    def _queue_status(state: _OperatorState, status_queue: Dict[str, FeedRequest]) -> None:
        """Replace whatever status request is queued for this operator."""
        status_queue.pop(state.system_id, None)
        target = status_feed_for(state.verdict.operator_type, state.feeds) if state.verdict else None
        if target:
            feed_name, url = target
            status_queue[state.system_id] = FeedRequest(name=feed_key(state.system_id, feed_name), url=url)

    # -- phase 3 ---------------------------------------------------------------

    def _fetch_optional(self, states: Dict[str, _OperatorState], optional: List[FeedRequest]) -> None:
        """Collect operator contact details and declared vehicle types."""
        results = self._fetch(optional)
        for request in optional:
            system_id, feed_name = split_feed_key(request.name)
            state = states.get(system_id)
            result = results.get(request.name)
            if state is None or result is None:
                continue
            if result.error or result.data is None:
                logger.info("Optional feed %s unavailable for %s: %s", feed_name, state.resolved_name, result.error)
                continue

            content = _content(result.data)
            if feed_name == SYSTEM_INFORMATION:
                state.operator_url = content.get("url") or content.get("operator_url") or None
                state.operator_email = content.get("email") or None
            elif feed_name == VEHICLE_TYPES:
                state.vehicle_types = result.data
                state.form_factors = extract_form_factors(result.data)

    # -- phase 4 ---------------------------------------------------------------

    def _reclassify(self, active: List[_OperatorState], status_queue: Dict[str, FeedRequest]) -> None:
        """Apply vehicle-type evidence; requeue the status feed when the verdict moved."""
        for state in active:
            if state.vehicle_types is None or state.verdict is None:
                continue
            previous = state.verdict
            state.verdict = reclassify(previous, state.feeds, state.vehicle_types, state.resolved_name)
            if state.verdict.operator_type != previous.operator_type:
                self._queue_status(state, status_queue)

    # -- phase 5 ---------------------------------------------------------------

    def _fetch_status(self, states: Dict[str, _OperatorState], active: List[_OperatorState],
                      status_queue: Dict[str, FeedRequest]) -> None:
        """Fetch and normalize the queued status feeds."""
        requests = list(status_queue.values())
        results = self._fetch(requests)
        for request in requests:
            system_id, feed_name = split_feed_key(request.name)
            state = states[system_id]
            result = results.get(request.name)
            if result is None or result.error or result.data is None:
                state.status_error = (result.error if result else None) or "Failed to fetch status feed."
                continue
            try:
                status = normalize_status(result.data, feed_name)
            except Exception as exc:
                logger.exception("Normalizing %s failed for %s", feed_name, state.resolved_name)
                state.status_error = f"Status feed {feed_name} could not be read: {exc}"
                continue
            if status is None:
                state.status_error = f"Status feed {feed_name} did not contain a valid vehicle or station list."
                continue
            state.status = status

        for state in active:
            if state.system_id in status_queue:
                continue
            if state.verdict is None or state.verdict.operator_type == OperatorType.UNKNOWN:
                state.status_error = "Unable to classify operator: no station or vehicle feeds published."
            else:
                state.status_error = f"No status feed published for {state.verdict.operator_type.value} operator."

    # -- phase 6 ---------------------------------------------------------------

    @staticmethod
    def _assemble(state: _OperatorState) -> OperatorResult:
        """Freeze working state into a result; drop a status computed for another verdict."""
        status = state.status
        if status is not None and state.verdict is not None:
            target = status_feed_for(state.verdict.operator_type, state.feeds)
            if target is None or target[0] != status.source_feed:
                status = None
                state.status_error = state.status_error or "Status no longer matches the operator classification."

        error = state.discovery_error or state.status_error
        return OperatorResult(
            operator=state.operator,
            state=ResultState.PARTIAL_ERROR if error else ResultState.SUCCESS,
            resolved_name=state.resolved_name,
            feeds=state.feeds,
            verdict=state.verdict,
            status=status,
            discovery_error=state.discovery_error,
            status_error=state.status_error,
            operator_url=state.operator_url,
            operator_email=state.operator_email,
            form_factors=state.form_factors,
            primary_form_factor=primary_form_factor(state.form_factors),
            friendly_error=create_friendly_error(error) if error else None,
        )

    def run(self, operators: Sequence[OperatorRecord]) -> List[OperatorResult]:
        """Run all phases; results follow the operators' encounter order."""
        states: Dict[str, _OperatorState] = {}
        for operator in operators:
            states.setdefault(operator.system_id, _OperatorState(operator=operator, resolved_name=operator.name))

        active = self._discover(states)
        optional, status_queue = self._classify(active)
        self._fetch_optional(states, optional)
        self._reclassify(active, status_queue)
        self._fetch_status(states, active, status_queue)
        return [self._assemble(state) for state in states.values()]


def sort_results(results: Sequence[OperatorResult]) -> List[OperatorResult]:
    """Largest fleet first, operators without counts last, ties in encounter order."""
    return sorted(
        results,
        key=lambda r: (r.total_vehicles is None, -(r.total_vehicles or 0)),
    )


def total_fleet(results: Sequence[OperatorResult]) -> Optional[int]:
    """Sum of fleets over error-free results, or None if none have counts."""
    totals = [r.total_vehicles for r in results if not r.has_error and r.total_vehicles is not None]
    return sum(totals) if totals else None
