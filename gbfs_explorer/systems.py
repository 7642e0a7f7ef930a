"""Search and group catalog operators by city."""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from gbfs_explorer.domain import CityGroup, OperatorRecord


def search_systems(systems: Sequence[OperatorRecord], query: str) -> List[OperatorRecord]:
    """Operators whose name or location contains the query, case-insensitively."""
    if not query:
        return []
    needle = query.lower()
    return [
        system
        for system in systems
        if needle in (system.name or "").lower() or needle in (system.location or "").lower()
    ]


def group_systems_by_city(systems: Sequence[OperatorRecord]) -> List[CityGroup]:
    """Group operators by lower-cased location, keeping first-seen order."""
    groups: Dict[str, CityGroup] = {}
    for system in systems:
        key = system.location.lower()
        group = groups.get(key)
        if group is None:
            group = CityGroup(city=system.location, country_code=system.country_code)
            groups[key] = group
        group.operators.append(system)
        group.system_ids.append(system.system_id)
    return list(groups.values())


def find_city(systems: Sequence[OperatorRecord], city: str) -> Optional[CityGroup]:
    """Return the group whose city matches exactly (case-insensitive)."""
    wanted = city.strip().lower()
    for group in group_systems_by_city(systems):
        if group.city.lower() == wanted:
            return group
    return None
