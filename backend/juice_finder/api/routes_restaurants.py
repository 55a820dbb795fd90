"""
Public restaurant routes: search, CSV export and filter dropdown values.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session
from typing import Any, Dict
import logging

from juice_finder.core.rate_limiting import limiter, SEARCH_LIMIT, LOOKUP_LIMIT
from juice_finder.db.database import get_db
from juice_finder.services.export import export_filename, results_to_csv
from juice_finder.services.lookups import LookupProvider
from juice_finder.services.search import SearchEngine, parse_search_query

logger = logging.getLogger(__name__)

router = APIRouter(tags=["restaurants"])


@router.get("/restaurants", response_model=Dict[str, Any])
@limiter.limit(SEARCH_LIMIT)
def search_restaurants(request: Request, db: Session = Depends(get_db)):
    """
    Search restaurants.

    Query parameters (all optional): search, type, location OR region +
    department, arrondissement, limit (20), offset (0),
    sortBy (none|name|distance), userLat, userLon.
    Malformed numbers fall back to their defaults.
    """
    query = parse_search_query(request.query_params)
    return SearchEngine(db).execute(query).to_dict()


@router.get("/restaurants/export.csv")
@limiter.limit(SEARCH_LIMIT)
def export_restaurants(request: Request, db: Session = Depends(get_db)):
    """Same parameters as /restaurants; returns the result page as CSV."""
    query = parse_search_query(request.query_params)
    result = SearchEngine(db).execute(query)
    logger.info(f"CSV export of {len(result.results)} restaurants")
    return Response(
        content=results_to_csv(result.results),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.get("/regions")
@limiter.limit(LOOKUP_LIMIT)
def list_regions(request: Request, db: Session = Depends(get_db)):
    regions = LookupProvider(db).get_regions()
    return {"regions": regions, "count": len(regions)}


@router.get("/departments")
@limiter.limit(LOOKUP_LIMIT)
def list_departments(request: Request, db: Session = Depends(get_db)):
    departments = LookupProvider(db).get_departments()
    return {"departments": departments, "count": len(departments)}


@router.get("/cities")
@limiter.limit(LOOKUP_LIMIT)
def list_cities(request: Request, db: Session = Depends(get_db)):
    cities = LookupProvider(db).get_cities()
    return {"cities": cities, "count": len(cities)}


@router.get("/locations")
@limiter.limit(LOOKUP_LIMIT)
def list_locations(request: Request, db: Session = Depends(get_db)):
    """Cities (without arrondissements) and departments, merged for the `location` filter."""
    locations = LookupProvider(db).get_locations()
    return {"locations": locations, "count": len(locations)}


@router.get("/arrondissements")
@limiter.limit(LOOKUP_LIMIT)
def list_arrondissements(request: Request, db: Session = Depends(get_db)):
    arrondissements = LookupProvider(db).get_arrondissements()
    return {"arrondissements": arrondissements, "count": len(arrondissements)}
