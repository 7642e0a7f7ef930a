"""Best-effort city inference for catalog entries without structured location.

The catalog only exposes a provider name and a producer URL, so the city is
guessed by substring match against an ordered table. First match wins; the
order matters where one pattern could be contained in another.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

UNKNOWN_LOCATION: Tuple[str, str] = ("Unknown Location", "")

# (lower-case pattern, city, ISO country code)
CITY_PATTERNS: Tuple[Tuple[str, str, str], ...] = (
    ("oslo", "Oslo", "NO"),
    ("bergen", "Bergen", "NO"),
    ("trondheim", "Trondheim", "NO"),
    ("stockholm", "Stockholm", "SE"),
    ("copenhagen", "Copenhagen", "DK"),
    ("helsinki", "Helsinki", "FI"),
    ("paris", "Paris", "FR"),
    ("london", "London", "GB"),
    ("berlin", "Berlin", "DE"),
    ("amsterdam", "Amsterdam", "NL"),
    ("new york", "New York", "US"),
    ("san francisco", "San Francisco", "US"),
    ("chicago", "Chicago", "US"),
    ("toronto", "Toronto", "CA"),
    ("montreal", "Montreal", "CA"),
    ("vancouver", "Vancouver", "CA"),
    ("sydney", "Sydney", "AU"),
    ("melbourne", "Melbourne", "AU"),
)


def infer_location(
    provider: Optional[str],
    producer_url: Optional[str],
    patterns: Iterable[Tuple[str, str, str]] = CITY_PATTERNS,
) -> Tuple[str, str]:
    """Return (city, country_code) for a catalog entry, or UNKNOWN_LOCATION."""
    search_text = f"{provider or ''} {producer_url or ''}".lower()
    for pattern, city, country_code in patterns:
        if pattern in search_text:
            return city, country_code
    return UNKNOWN_LOCATION
