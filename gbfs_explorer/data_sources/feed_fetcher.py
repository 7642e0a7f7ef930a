"""Concurrent, time-boxed fetching of GBFS documents with per-item failure isolation."""
from __future__ import annotations

import json
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import requests

from gbfs_explorer.cache import TTLCache
from gbfs_explorer.domain import FeedRequest, FeedResult
from gbfs_explorer.errors import (
    ContentTypeError,
    ExplorerError,
    FeedTimeoutError,
    NetworkError,
    ParseError,
    UpstreamError,
)
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="data_sources/feed_fetcher")

JSON_CONTENT_TYPES = ("application/json", "application/geo+json")
DEFAULT_FEED_TIMEOUT = 10.0
DEFAULT_SINGLE_TIMEOUT = 7.0
DEFAULT_CACHE_TTL = 60


def is_json_content_type(content_type: Optional[str]) -> bool:
    """Return True for JSON media types, including structured `+json` suffixes."""
    if not content_type:
        return False
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime in JSON_CONTENT_TYPES or mime.endswith("+json")


def _timeout_message(url: str, timeout: float) -> str:
    return f"Request to {mask_url(url)} timed out after {timeout:g} seconds"


def _path_and_query(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.path}?{parsed.query}" if parsed.query else parsed.path


def scrub_url(text: str, url: str) -> str:
    """Replace the raw URL, or its path and query as urllib3 quotes them, with the masked form."""
    masked = mask_url(url)
    if masked == url:
        return text
    text = text.replace(url, masked)
    raw_tail, masked_tail = _path_and_query(url), _path_and_query(masked)
    return text.replace(raw_tail, masked_tail) if raw_tail else text


class FeedFetcher:
    """Fetch GBFS documents one at a time or as a concurrent batch."""

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_FEED_TIMEOUT,
        single_timeout: float = DEFAULT_SINGLE_TIMEOUT,
        cache: Optional[TTLCache[List[Tuple[FeedRequest, FeedResult]]]] = None,
        excerpt_chars: int = 200,
        user_agent: str = "GBFSExplorer/1.0",
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        self.single_timeout = single_timeout
        self.cache = cache if cache is not None else TTLCache(DEFAULT_CACHE_TTL, name="feed_fetch")
        self.excerpt_chars = excerpt_chars
        self.user_agent = user_agent

    def _excerpt(self, text: Optional[str]) -> str:
        return (text or "")[: self.excerpt_chars]

    def get_json(self, url: str, timeout: float) -> Any:
        """GET url and decode JSON, raising a typed ExplorerError on any failure."""
        try:
            resp = self.session.get(
                url,
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
                timeout=timeout,
                allow_redirects=True,
            )
        except requests.exceptions.Timeout as exc:
            raise FeedTimeoutError(_timeout_message(url, timeout)) from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"Network error fetching {mask_url(url)}: {scrub_url(str(exc), url)}") from exc

        if not resp.ok:
            excerpt = self._excerpt(resp.text)
            raise UpstreamError(f"HTTP {resp.status_code}: {excerpt}", status_code=resp.status_code, excerpt=excerpt)

        content_type = resp.headers.get("Content-Type", "")
        if not is_json_content_type(content_type):
            raise ContentTypeError(
                f"Unexpected Content-Type from {mask_url(url)}: {content_type or 'none'}. "
                f"Expected JSON. Response: {self._excerpt(resp.text)}"
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise ParseError(f"Invalid JSON from {mask_url(url)}: {exc}") from exc

    def fetch_single(self, url: str) -> Any:
        """Fetch one document for pass-through; errors keep the upstream status."""
        logger.debug("Proxy fetch %s", mask_url(url))
        try:
            return self.get_json(url, self.single_timeout)
        except UpstreamError as exc:
            raise UpstreamError(
                f"Provider error: {exc.status_code} - {exc.excerpt}",
                status_code=exc.status_code,
                excerpt=exc.excerpt,
            ) from exc

    def _fetch_item(self, item: FeedRequest) -> FeedResult:
        """Fetch one batch item, converting any failure into the item's error."""
        try:
            data = self.get_json(item.url, self.timeout)
        except ExplorerError as exc:
            logger.info("Feed %s failed: %s", item.name, exc)
            return FeedResult(name=item.name, error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected failure fetching feed %s (%s)", item.name, mask_url(item.url))
            return FeedResult(name=item.name, error=f"Unexpected error: {scrub_url(str(exc), item.url)}")
        return FeedResult(name=item.name, data=data)

    @staticmethod
    def cache_key(items: Sequence[FeedRequest]) -> str:
        """Identity of a batch: its sorted URL list."""
        return json.dumps(sorted(item.url for item in items))

    def _cached_results(self, key: str, items: Sequence[FeedRequest]) -> Optional[List[FeedResult]]:
        """Return cached results re-ordered to match items, or None on a miss.

        Entries are matched on (name, url) one-to-one, so repeated names with
        different URLs each get their own document back.
        """
        cached = self.cache.get(key)
        if cached is None:
            return None
        by_request: Dict[Tuple[str, str], List[FeedResult]] = defaultdict(list)
        for request, result in cached:
            by_request[(request.name, request.url)].append(result)
        ordered: List[FeedResult] = []
        for item in items:
            matches = by_request.get((item.name, item.url))
            if not matches:
                return None
            ordered.append(matches.pop(0).model_copy())
        return ordered

    def fetch_many(self, items: Iterable[FeedRequest | dict]) -> List[FeedResult]:
        """Fetch all items concurrently; one result per item, in input order."""
        batch = [item if isinstance(item, FeedRequest) else FeedRequest.model_validate(item) for item in items]
        if not batch:
            return []

        key = self.cache_key(batch)
        cached = self._cached_results(key, batch)
        if cached is not None:
            logger.debug("Feed batch cache hit (%d items)", len(batch))
            return cached

        logger.info("Fetching %d feeds concurrently", len(batch))
        executor = ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="feed-fetch")
        try:
            futures = [executor.submit(self._fetch_item, item) for item in batch]
            done, _pending = wait(futures, timeout=self.timeout)
            results: List[FeedResult] = []
            for item, future in zip(batch, futures):
                if future in done:
                    results.append(future.result())
                else:
                    future.cancel()
                    logger.info("Feed %s abandoned after %ss", item.name, self.timeout)
                    results.append(FeedResult(name=item.name, error=_timeout_message(item.url, self.timeout)))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        self.cache.set(key, list(zip(batch, results)))
        return [result.model_copy() for result in results]
