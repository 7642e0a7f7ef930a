"""Extract the feed map and operator name from a GBFS discovery document (gbfs.json).

Handles the multi-language layout of GBFS 1.x/2.x (`{"data": {"en": {"feeds": [...]}}}`),
the flat layout of GBFS 3.x (`{"data": {"feeds": [...]}}`) and documents that
arrive already unwrapped. Absence of feeds is a legitimate outcome and is
returned as an empty map, never raised.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="discovery")

LANGUAGE_PRIORITY: Tuple[str, ...] = ("en", "nb")


def _unwrap(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Strip one `data` envelope unless the document already lists feeds at the root."""
    inner = doc.get("data")
    if inner and "feeds" not in doc and isinstance(inner, dict):
        return inner
    return doc


def _collect_feeds(entries: List[Any]) -> Dict[str, str]:
    """Map feed name -> url for entries carrying both as strings."""
    feeds: Dict[str, str] = {}
    for entry in entries:
        if isinstance(entry, dict) and isinstance(entry.get("name"), str) and isinstance(entry.get("url"), str):
            feeds[entry["name"]] = entry["url"]
    return feeds


def _name_or(value: Any, fallback: str) -> str:
    return value if isinstance(value, str) and value else fallback


def parse_discovery(doc: Any, fallback_name: str) -> Tuple[Dict[str, str], str]:
    """Return (feed_map, resolved_name) for a raw discovery document."""
    if not isinstance(doc, dict):
        return {}, fallback_name

    content = _unwrap(doc)

    # dict preserves insertion order, so priority languages come first
    candidates = list(dict.fromkeys([*LANGUAGE_PRIORITY, *content.keys()]))
    for lang in candidates:
        lang_data = content.get(lang)
        if not isinstance(lang_data, dict) or not isinstance(lang_data.get("feeds"), list):
            continue
        feeds = _collect_feeds(lang_data["feeds"])
        if feeds:
            logger.debug("Discovered %d feeds under language '%s'", len(feeds), lang)
            return feeds, _name_or(lang_data.get("name"), fallback_name)

    if isinstance(content.get("feeds"), list):
        feeds = _collect_feeds(content["feeds"])
        if feeds:
            return feeds, _name_or(content.get("name"), fallback_name)

    return {}, fallback_name
