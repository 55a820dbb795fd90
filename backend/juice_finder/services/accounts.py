"""
Local user profiles, password-optional login, and per-user bookmark and
archive lists.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from juice_finder.core.exceptions import (
    AuthenticationError, ConflictError, NotFoundError, ValidationError,
)
from juice_finder.db.models import ArchivedRestaurant, BookmarkedRestaurant, User
from juice_finder.db.repositories import (
    EstablishmentRepository, SavedRestaurantRepository, UserRepository,
)
from juice_finder.services.search import establishment_to_dict

logger = logging.getLogger(__name__)


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode(), hashed.encode())


def parse_id(raw: Any, field: str) -> int:
    """Required integer identifier from a header, body or query value."""
    if raw is None or str(raw).strip() == "":
        raise ValidationError(f"{field} est requis", error=f"L'ID {field} est requis")
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"{field} invalide: {raw!r}", error=f"L'ID {field} est invalide")


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


class AccountService:
    def __init__(self, db: Session):
        self.db = db
        self.users = UserRepository(db)

    def list_users(self) -> List[Dict[str, Any]]:
        """Profiles in creation order; only a flag reveals whether a password is set."""
        return [
            dict(user_to_dict(u), hasPassword=bool(u.password))
            for u in self.users.list_users()
        ]

    def create_user(self, username: Optional[str], password: Optional[str] = None) -> Dict[str, Any]:
        username = (username or "").strip()
        if not username:
            raise ValidationError(error="Le nom d'utilisateur est requis")
        if self.users.get_by_username(username):
            raise ConflictError(error="Ce nom d'utilisateur existe déjà")

        password_hash = hash_password(password) if password and password.strip() else None
        try:
            user = self.users.create(username, password_hash)
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(error="Ce nom d'utilisateur existe déjà")
        logger.info(f"User created: {user.username} (id={user.id})")
        return user_to_dict(user)

    def login(self, user_id: Any, password: Optional[str] = None) -> Dict[str, Any]:
        uid = parse_id(user_id, "utilisateur")
        user = self.users.get_by_id(uid)
        if user is None:
            raise NotFoundError(error="Utilisateur introuvable")

        if user.password:
            if not password:
                raise AuthenticationError(
                    error="Mot de passe requis",
                    extra={"requiresPassword": True},
                )
            if not verify_password(password, user.password):
                raise AuthenticationError(error="Mot de passe incorrect")

        return {"userId": user.id, "username": user.username}

    def require_user(self, raw_user_id: Optional[str]) -> User:
        """Resolve the X-User-Id header to an existing user."""
        if raw_user_id is None or not str(raw_user_id).strip():
            raise AuthenticationError()
        user = self.users.get_by_id(parse_id(raw_user_id, "utilisateur"))
        if user is None:
            raise NotFoundError(error="Utilisateur introuvable")
        return user


class SavedRestaurantService:
    """Bookmarks and archive share this logic; `kind` only changes the table and messages."""

    MODELS = {
        "bookmark": BookmarkedRestaurant,
        "archive": ArchivedRestaurant,
    }
    DUPLICATE_MESSAGES = {
        "bookmark": "Ce restaurant est déjà marqué",
        "archive": "Ce restaurant est déjà archivé",
    }

    def __init__(self, db: Session, kind: str):
        self.db = db
        self.kind = kind
        self.repo = SavedRestaurantRepository(db, self.MODELS[kind])
        self.accounts = AccountService(db)

    @staticmethod
    def _entry_to_dict(entry: Any) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "userId": entry.user_id,
            "restaurantId": entry.restaurant_id,
            "createdAt": entry.created_at.isoformat() if entry.created_at else None,
            "restaurant": establishment_to_dict(entry.restaurant) if entry.restaurant else None,
        }

    def list_entries(self, raw_user_id: Optional[str]) -> List[Dict[str, Any]]:
        user = self.accounts.require_user(raw_user_id)
        return [self._entry_to_dict(e) for e in self.repo.list_for_user(user.id)]

    def add(self, raw_user_id: Optional[str], raw_restaurant_id: Any) -> Dict[str, Any]:
        user = self.accounts.require_user(raw_user_id)
        restaurant_id = parse_id(raw_restaurant_id, "restaurant")
        if EstablishmentRepository(self.db).get_by_id(restaurant_id) is None:
            raise NotFoundError(error="Restaurant introuvable")
        if self.repo.get(user.id, restaurant_id):
            raise ConflictError(error=self.DUPLICATE_MESSAGES[self.kind])
        try:
            entry = self.repo.add(user.id, restaurant_id)
        except IntegrityError:
            # Concurrent duplicate past the check above
            self.db.rollback()
            raise ConflictError(error=self.DUPLICATE_MESSAGES[self.kind])
        logger.info(f"{self.kind}: user {user.id} + restaurant {restaurant_id}")
        return self._entry_to_dict(entry)

    def remove(self, raw_user_id: Optional[str], raw_restaurant_id: Any) -> None:
        user = self.accounts.require_user(raw_user_id)
        restaurant_id = parse_id(raw_restaurant_id, "restaurant")
        entry = self.repo.get(user.id, restaurant_id)
        if entry is None:
            raise NotFoundError(error="Entrée introuvable")
        self.repo.remove(entry)
        logger.info(f"{self.kind}: user {user.id} - restaurant {restaurant_id}")
