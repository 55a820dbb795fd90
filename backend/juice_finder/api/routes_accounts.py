"""
User profiles, login, bookmarks and archived restaurants.
The caller's identity travels in the X-User-Id header.
"""

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session
from typing import Optional, Union
import logging

from juice_finder.core.rate_limiting import limiter, ACCOUNT_LIMIT
from juice_finder.db.database import get_db
from juice_finder.services.accounts import AccountService, SavedRestaurantService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["accounts"])


# ---------------------------------------------------------------------------
# Request models (fields are validated by the services, so that a missing
# value is a 400 with a readable message rather than a 422)
# ---------------------------------------------------------------------------

class UserCreate(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    userId: Optional[Union[int, str]] = None
    password: Optional[str] = None


class SavedRestaurantRequest(BaseModel):
    restaurantId: Optional[Union[int, str]] = None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@router.get("/auth/users")
@limiter.limit(ACCOUNT_LIMIT)
def list_users(request: Request, db: Session = Depends(get_db)):
    return AccountService(db).list_users()


@router.post("/auth/users", status_code=201)
@limiter.limit(ACCOUNT_LIMIT)
def create_user(request: Request, body: UserCreate, db: Session = Depends(get_db)):
    return AccountService(db).create_user(body.username, body.password)


@router.post("/auth/login")
@limiter.limit(ACCOUNT_LIMIT)
def login(request: Request, body: LoginRequest, db: Session = Depends(get_db)):
    return AccountService(db).login(body.userId, body.password)


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------

@router.get("/bookmarks")
@limiter.limit(ACCOUNT_LIMIT)
def list_bookmarks(
    request: Request,
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    return SavedRestaurantService(db, "bookmark").list_entries(x_user_id)


@router.post("/bookmarks", status_code=201)
@limiter.limit(ACCOUNT_LIMIT)
def add_bookmark(
    request: Request,
    body: SavedRestaurantRequest,
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    return SavedRestaurantService(db, "bookmark").add(x_user_id, body.restaurantId)


@router.delete("/bookmarks")
@limiter.limit(ACCOUNT_LIMIT)
def remove_bookmark(
    request: Request,
    restaurantId: Optional[str] = Query(None),
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    SavedRestaurantService(db, "bookmark").remove(x_user_id, restaurantId)
    return {"message": "Bookmark supprimé"}


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------

@router.get("/archived")
@limiter.limit(ACCOUNT_LIMIT)
def list_archived(
    request: Request,
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    return SavedRestaurantService(db, "archive").list_entries(x_user_id)


@router.post("/archived", status_code=201)
@limiter.limit(ACCOUNT_LIMIT)
def archive_restaurant(
    request: Request,
    body: SavedRestaurantRequest,
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    return SavedRestaurantService(db, "archive").add(x_user_id, body.restaurantId)


@router.delete("/archived")
@limiter.limit(ACCOUNT_LIMIT)
def unarchive_restaurant(
    request: Request,
    restaurantId: Optional[str] = Query(None),
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    SavedRestaurantService(db, "archive").remove(x_user_id, restaurantId)
    return {"message": "Restaurant désarchivé"}
