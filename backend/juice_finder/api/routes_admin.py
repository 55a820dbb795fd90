"""
Administrative routes: ingestion runs and destructive maintenance.
Protected by the X-API-Key header.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
import logging

from juice_finder.core.config import settings
from juice_finder.core.rate_limiting import limiter, ADMIN_LIMIT
from juice_finder.db.database import get_db
from juice_finder.db.repositories import EstablishmentRepository
from juice_finder.services import lookups
from juice_finder.services.ingestion import Reconciler, delete_nameless, reset_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/restaurants", tags=["admin"])


def require_admin_key(request: Request) -> None:
    api_key = request.headers.get("X-API-Key", "")
    if api_key != settings.admin_api_key:
        raise HTTPException(status_code=403, detail="Invalid or missing API key")


@router.post("/update", dependencies=[Depends(require_admin_key)])
@limiter.limit(ADMIN_LIMIT)
def sync_paginated(request: Request, db: Session = Depends(get_db)):
    """Synchronise with the OpenDataSoft records endpoint, page by page."""
    logger.info("Paginated synchronisation requested")
    try:
        stats = Reconciler(db).run_paginated()
    finally:
        lookups.clear_cache()
    return {
        "success": True,
        "message": "Synchronisation réussie",
        "stats": stats.to_dict(),
    }


@router.post("/test-update", dependencies=[Depends(require_admin_key)])
@limiter.limit(ADMIN_LIMIT)
def sync_trial(request: Request, db: Session = Depends(get_db)):
    """Small synchronisation: stops after `trial_sync_size` valid records."""
    logger.info("Trial synchronisation requested")
    try:
        stats = Reconciler(db).run_trial()
    finally:
        lookups.clear_cache()
    return {
        "success": True,
        "message": f"Test réussi ({stats.valid}/{stats.fetched} avec contact)",
        "stats": stats.to_dict(),
    }


@router.post("/import-json", dependencies=[Depends(require_admin_key)])
@limiter.limit(ADMIN_LIMIT)
def import_bulk(request: Request, db: Session = Depends(get_db)):
    """Import the full OpenDataSoft JSON export in one run."""
    logger.info("Bulk JSON import requested")
    try:
        stats = Reconciler(db).run_bulk()
    finally:
        lookups.clear_cache()
    return {
        "success": True,
        "message": "Import JSON réussi",
        "stats": stats.to_dict(),
    }


@router.post("/cleanup", dependencies=[Depends(require_admin_key)])
@limiter.limit(ADMIN_LIMIT)
def cleanup_nameless(request: Request, db: Session = Depends(get_db)):
    """Delete every establishment without a name."""
    result = delete_nameless(db)
    lookups.clear_cache()
    return {
        "success": True,
        "message": f"{result['deleted']} restaurants sans nom supprimés",
        "deleted": result["deleted"],
        "remaining": result["remaining"],
    }


@router.get("/debug", dependencies=[Depends(require_admin_key)])
@limiter.limit(ADMIN_LIMIT)
def debug_latest(request: Request, db: Session = Depends(get_db)):
    """Latest 50 establishments by creation date, with the table size."""
    repo = EstablishmentRepository(db)
    latest = repo.latest(limit=50)
    return {
        "total": repo.count_all(),
        "showing": len(latest),
        "restaurants": [
            {
                "id": r.id,
                "name": r.name,
                "type": r.type,
                "phone": r.phone,
                "email": r.email,
                "city": r.city,
                "source_id": r.source_id,
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }
            for r in latest
        ],
    }


@router.delete("/debug", dependencies=[Depends(require_admin_key)])
@limiter.limit(ADMIN_LIMIT)
def reset_all(request: Request, db: Session = Depends(get_db)):
    """Delete every establishment (development reset)."""
    deleted = reset_store(db)
    lookups.clear_cache()
    return {"success": True, "message": f"{deleted} restaurants supprimés"}
