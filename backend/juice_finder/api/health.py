"""
Health check routes.
Probes for load-balancer readiness and liveness.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from sqlalchemy import text
from datetime import datetime
import time
import logging

from juice_finder.db.database import get_db
from juice_finder.core.rate_limiting import limiter, HEALTH_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_STARTUP_TIME = time.time()


@router.get("")
@limiter.limit(HEALTH_LIMIT)
def health_check(request: Request, db: Session = Depends(get_db)):
    """
    Check system health: database connectivity, restaurant count, uptime.
    """
    health = {
        "status": "healthy",
        "database": "unavailable",
        "restaurants": 0,
        "uptime_seconds": int(time.time() - _STARTUP_TIME),
        "timestamp": datetime.utcnow().isoformat(),
    }

    try:
        result = db.execute(text("SELECT COUNT(*) FROM restaurants")).scalar()
        health["database"] = "available"
        health["restaurants"] = result or 0
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        health["status"] = "degraded"

    return health


@router.get("/ready")
@limiter.limit(HEALTH_LIMIT)
def readiness_check(request: Request, db: Session = Depends(get_db)):
    """Ready only when the database answers."""
    try:
        db.execute(text("SELECT 1"))
        return {"ready": True, "timestamp": datetime.utcnow().isoformat()}
    except Exception as e:
        logger.error(f"Readiness check failed: {str(e)}")
        return {"ready": False, "error": str(e)}


@router.get("/live")
async def liveness_check():
    return {"alive": True, "uptime_seconds": int(time.time() - _STARTUP_TIME)}
