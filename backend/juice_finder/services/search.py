"""
Restaurant search engine.

A SearchQuery is parsed from raw request parameters, then executed by one of
two plans sharing the same filters:

  - StructuredPlan: ORM query ordered by name (sortBy=none|name)
  - DistancePlan:   raw parameterized SQL ordered by a store-computed
                    distance from the user's position (sortBy=distance)

Distance uses the planar approximation the frontend was built against:

    111.045 * sqrt((lat - userLat)^2 + (cos(radians(userLat)) * (lon - userLon))^2)

It is evaluated by the database so that LIMIT/OFFSET and the total count
describe the same ordered set.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from sqlalchemy import func, or_, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from juice_finder.core.config import settings
from juice_finder.core.exceptions import StoreUnavailableError
from juice_finder.core.monitoring import track_performance
from juice_finder.db.models import Establishment

logger = logging.getLogger(__name__)

KM_PER_DEGREE = 111.045
SORT_MODES = ("none", "name", "distance")
DEFAULT_SORT = "none"
LIKE_ESCAPE = "/"

_COLUMNS = [c.name for c in Establishment.__table__.columns]

_RESULT_FIELDS = (
    "name", "type", "cuisine", "phone", "website", "email",
    "street", "housenumber", "postcode", "city", "region", "department",
    "opening_hours", "wheelchair", "delivery", "takeaway", "outdoor_seating",
)


def approx_distance_km(lat: float, lon: float, user_lat: float, user_lon: float) -> float:
    """Python twin of the SQL distance expression."""
    d_lat = lat - user_lat
    d_lon = math.cos(math.radians(user_lat)) * (lon - user_lon)
    return KM_PER_DEGREE * math.sqrt(d_lat * d_lat + d_lon * d_lon)


# ---------------------------------------------------------------------------
# Geographic scope
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CombinedScope:
    """`location` parameter: one token matched against city OR department."""
    token: str

    def clause(self):
        return [or_(Establishment.city == self.token, Establishment.department == self.token)]

    def sql(self, key: str) -> Tuple[str, Dict[str, Any]]:
        return f"(city = :{key} OR department = :{key})", {key: self.token}


@dataclass(frozen=True)
class RegionDepartmentScope:
    """`region` + `department` parameters, each optional, matched separately."""
    region: Optional[str] = None
    department: Optional[str] = None

    def clause(self):
        clauses = []
        if self.region:
            clauses.append(Establishment.region == self.region)
        if self.department:
            clauses.append(Establishment.department == self.department)
        return clauses

    def sql(self, key: str) -> Tuple[str, Dict[str, Any]]:
        parts, params = [], {}
        if self.region:
            parts.append(f"region = :{key}_reg")
            params[f"{key}_reg"] = self.region
        if self.department:
            parts.append(f"department = :{key}_dep")
            params[f"{key}_dep"] = self.department
        return " AND ".join(parts), params


@dataclass(frozen=True)
class ArrondissementScope:
    """`arrondissement` parameter, e.g. "Paris 1er Arrondissement", stored as the city."""
    city: str

    def clause(self):
        return [Establishment.city == self.city]

    def sql(self, key: str) -> Tuple[str, Dict[str, Any]]:
        return f"city = :{key}", {key: self.city}


GeoScope = Union[CombinedScope, RegionDepartmentScope, ArrondissementScope]


def build_scopes(
    location: Optional[str] = None,
    region: Optional[str] = None,
    department: Optional[str] = None,
    arrondissement: Optional[str] = None,
) -> Tuple[GeoScope, ...]:
    """
    Map both parameter conventions onto GeoScope values.
    `location` takes precedence over region/department; `arrondissement`
    always narrows further.
    """
    scopes: List[GeoScope] = []
    if location:
        scopes.append(CombinedScope(location))
    elif region or department:
        scopes.append(RegionDepartmentScope(region=region, department=department))
    if arrondissement:
        scopes.append(ArrondissementScope(arrondissement))
    return tuple(scopes)


# ---------------------------------------------------------------------------
# Query parameters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SearchQuery:
    search: Optional[str] = None
    type: Optional[str] = None
    scopes: Tuple[GeoScope, ...] = field(default_factory=tuple)
    limit: int = 20
    offset: int = 0
    sort_by: str = DEFAULT_SORT
    user_lat: float = 0.0
    user_lon: float = 0.0

    @property
    def distance_enabled(self) -> bool:
        return self.sort_by == "distance" and self.user_lat != 0 and self.user_lon != 0


def _clean(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    value = str(raw).strip()
    return value or None


def _coerce_int(raw: Optional[str], default: int) -> int:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return value if value >= 0 else default


def _coerce_float(raw: Optional[str], default: float = 0.0) -> float:
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return default
    if math.isnan(value) or math.isinf(value):
        return default
    return value


def parse_search_query(params: Mapping[str, Optional[str]]) -> SearchQuery:
    """
    Build a SearchQuery from raw query-string values.
    Malformed numbers fall back to defaults instead of failing the request.
    """
    limit = _coerce_int(params.get("limit"), settings.search_default_limit)
    limit = min(limit, settings.search_max_limit)

    sort_by = _clean(params.get("sortBy")) or DEFAULT_SORT
    if sort_by not in SORT_MODES:
        sort_by = DEFAULT_SORT

    return SearchQuery(
        search=_clean(params.get("search")),
        type=_clean(params.get("type")),
        scopes=build_scopes(
            location=_clean(params.get("location")),
            region=_clean(params.get("region")),
            department=_clean(params.get("department")),
            arrondissement=_clean(params.get("arrondissement")),
        ),
        limit=limit,
        offset=_coerce_int(params.get("offset"), 0),
        sort_by=sort_by,
        user_lat=_coerce_float(params.get("userLat")),
        user_lon=_coerce_float(params.get("userLon")),
    )


def like_pattern(term: str) -> str:
    """Lower-cased substring LIKE pattern with wildcards escaped."""
    escaped = (
        term.lower()
        .replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------

def establishment_to_dict(row: Union[Establishment, Mapping[str, Any]]) -> Dict[str, Any]:
    """Flatten an ORM object or a raw result row into the API result shape."""
    if isinstance(row, Establishment):
        values = {name: getattr(row, name) for name in _COLUMNS}
    else:
        values = dict(row)

    result: Dict[str, Any] = {"id": str(values["id"])}
    for name in _RESULT_FIELDS:
        result[name] = values.get(name)

    lat, lon = values.get("lat"), values.get("lon")
    if lat is not None and lon is not None:
        result["meta_geo_point"] = {"lat": lat, "lon": lon}

    result["osm_id"] = values.get("osm_id")
    result["osm_type"] = values.get("osm_type")
    result["source_id"] = values.get("source_id")

    if values.get("distance_km") is not None:
        result["distance_km"] = round(float(values["distance_km"]), 3)
    return result


# ---------------------------------------------------------------------------
# Query plans
# ---------------------------------------------------------------------------

class StructuredPlan:
    """Name-ordered search expressed with ORM filters."""

    def __init__(self, db: Session):
        self.db = db

    def _filtered(self, query: SearchQuery):
        q = self.db.query(Establishment).filter(
            Establishment.name.isnot(None),
            func.trim(Establishment.name) != "",
        )
        if query.search:
            q = q.filter(
                func.lower(Establishment.name).like(like_pattern(query.search), escape=LIKE_ESCAPE)
            )
        if query.type:
            q = q.filter(Establishment.type == query.type)
        for scope in query.scopes:
            q = q.filter(*scope.clause())
        return q

    def execute(self, query: SearchQuery) -> Tuple[List[Dict[str, Any]], int]:
        filtered = self._filtered(query)
        total_count = filtered.count()
        rows = (
            filtered.order_by(Establishment.name.asc(), Establishment.id.asc())
            .offset(query.offset)
            .limit(query.limit)
            .all()
        )
        return [establishment_to_dict(r) for r in rows], total_count


_DISTANCE_SQL = (
    "(111.045 * SQRT("
    "(lat - :user_lat) * (lat - :user_lat) + "
    "(COS(RADIANS(:user_lat)) * (lon - :user_lon)) * "
    "(COS(RADIANS(:user_lat)) * (lon - :user_lon))"
    "))"
)


class DistancePlan:
    """Distance-ordered search as one raw parameterized statement plus its count."""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _where(query: SearchQuery) -> Tuple[str, Dict[str, Any]]:
        clauses = [
            "name IS NOT NULL",
            "TRIM(name) <> ''",
            "lat IS NOT NULL",
            "lon IS NOT NULL",
        ]
        params: Dict[str, Any] = {}
        if query.search:
            clauses.append(f"LOWER(name) LIKE :search ESCAPE '{LIKE_ESCAPE}'")
            params["search"] = like_pattern(query.search)
        if query.type:
            clauses.append("type = :type")
            params["type"] = query.type
        for i, scope in enumerate(query.scopes):
            fragment, scope_params = scope.sql(f"scope{i}")
            if fragment:
                clauses.append(fragment)
                params.update(scope_params)
        return "WHERE " + " AND ".join(clauses), params

    def execute(self, query: SearchQuery) -> Tuple[List[Dict[str, Any]], int]:
        where, params = self._where(query)
        columns = ", ".join(_COLUMNS)

        rows_sql = text(
            f"SELECT {columns}, {_DISTANCE_SQL} AS distance_km "
            f"FROM restaurants {where} "
            "ORDER BY distance_km ASC, id ASC "
            "LIMIT :limit OFFSET :offset"
        )
        count_sql = text(f"SELECT COUNT(*) FROM restaurants {where}")

        row_params = dict(
            params,
            user_lat=query.user_lat,
            user_lon=query.user_lon,
            limit=query.limit,
            offset=query.offset,
        )
        rows = self.db.execute(rows_sql, row_params).mappings().all()
        total_count = self.db.execute(count_sql, params).scalar() or 0
        return [establishment_to_dict(r) for r in rows], int(total_count)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass
class SearchResult:
    total_count: int
    results: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {"total_count": self.total_count, "results": self.results}


class SearchEngine:
    """Dispatches a SearchQuery to the plan matching its sort mode."""

    def __init__(self, db: Session):
        self.db = db

    def plan_for(self, query: SearchQuery):
        if query.distance_enabled:
            return DistancePlan(self.db)
        return StructuredPlan(self.db)

    @track_performance("restaurant search")
    def execute(self, query: SearchQuery) -> SearchResult:
        plan = self.plan_for(query)
        try:
            results, total_count = plan.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"Search failed ({type(plan).__name__}): {e}")
            raise StoreUnavailableError(str(e)) from e
        logger.debug(
            f"{type(plan).__name__}: {len(results)} of {total_count} "
            f"(offset={query.offset}, limit={query.limit})"
        )
        return SearchResult(total_count=total_count, results=results)
