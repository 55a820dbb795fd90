"""
Filter dropdown values (regions, departments, cities, locations,
arrondissements), read with DISTINCT queries on the restaurants table.

Values change only when an ingestion run or a maintenance operation touches
the table, so they are kept in an in-memory TTL cache that those operations
clear.
"""

from __future__ import annotations
from typing import Any, Dict, List
from sqlalchemy.orm import Session
import logging
import re
import time
import unicodedata

from juice_finder.core.config import settings
from juice_finder.db.repositories import EstablishmentRepository

logger = logging.getLogger(__name__)

# "Paris 1er Arrondissement", "Lyon 3e Arrondissement", "Marseille 12 Arrondissement"
ARRONDISSEMENT_RE = re.compile(r"^(.+?)\s+(\d+)e?r?\s+Arrondissement$", re.IGNORECASE)

# ---- In-memory TTL cache (shared across requests) ----
_CACHE: Dict[str, Any] = {}
_CACHE_TS: Dict[str, float] = {}


def _cached(key: str) -> Any:
    ts = _CACHE_TS.get(key, 0)
    if time.time() - ts < settings.lookup_cache_ttl_seconds and key in _CACHE:
        return _CACHE[key]
    return None


def _set_cache(key: str, val: Any) -> Any:
    _CACHE[key] = val
    _CACHE_TS[key] = time.time()
    return val


def clear_cache():
    """Clear all cached lookups (called after ingestion and maintenance)."""
    _CACHE.clear()
    _CACHE_TS.clear()


def is_arrondissement(city: str) -> bool:
    return bool(ARRONDISSEMENT_RE.match(city.strip()))


def collation_key(value: str) -> str:
    """Accent- and case-insensitive sort key ("Évry" sorts with the E's)."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).casefold()


def _arrondissement_key(city: str):
    match = ARRONDISSEMENT_RE.match(city)
    return (collation_key(match.group(1)), match.group(1), int(match.group(2)))


class LookupProvider:
    """Distinct filter values, cached for `lookup_cache_ttl_seconds`."""

    def __init__(self, db: Session):
        self.repo = EstablishmentRepository(db)

    def _distinct(self, column: str) -> List[str]:
        key = f"distinct:{column}"
        cached = _cached(key)
        if cached is not None:
            return cached
        return _set_cache(key, self.repo.distinct_values(column))

    def get_regions(self) -> List[str]:
        return self._distinct("region")

    def get_departments(self) -> List[str]:
        return self._distinct("department")

    def get_cities(self) -> List[str]:
        return self._distinct("city")

    def get_locations(self) -> List[str]:
        """Cities (arrondissements excluded) merged with departments."""
        cached = _cached("locations")
        if cached is not None:
            return cached
        cities = [c for c in self.get_cities() if not is_arrondissement(c)]
        merged = sorted(set(cities) | set(self.get_departments()))
        return _set_cache("locations", merged)

    def get_arrondissements(self) -> List[str]:
        """Arrondissement city values, ordered by city then by number."""
        cached = _cached("arrondissements")
        if cached is not None:
            return cached
        arrondissements = [c for c in self.get_cities() if is_arrondissement(c)]
        arrondissements.sort(key=_arrondissement_key)
        logger.debug(f"{len(arrondissements)} arrondissements found")
        return _set_cache("arrondissements", arrondissements)
