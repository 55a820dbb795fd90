"""
Repository pattern for data access.
Establishment upserts, maintenance deletes, distinct lookups, and the
user / bookmark / archive tables.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Type, Union

from sqlalchemy import func, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, joinedload
import logging

from juice_finder.db.models import (
    ArchivedRestaurant, BookmarkedRestaurant, Establishment, User,
)

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class EstablishmentRepository:
    """Data access for the restaurants table."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, restaurant_id: int) -> Optional[Establishment]:
        return self.db.get(Establishment, restaurant_id)

    def get_by_source_id(self, source_id: str) -> Optional[Establishment]:
        return self.db.query(Establishment).filter(
            Establishment.source_id == source_id
        ).first()

    def upsert(self, values: Dict[str, Any]) -> bool:
        """
        Insert or overwrite one establishment keyed on source_id.
        Returns True when the row was inserted, False when it was updated.

        Inserted rows keep last_update NULL; the conflict branch overwrites
        every mapped column and stamps last_update, which is how the
        RETURNING clause tells the two apart. The caller commits.
        """
        dialect = self.db.get_bind().dialect.name
        insert_fn = _UPSERT_DIALECTS.get(dialect)
        if insert_fn is None:
            raise NotImplementedError(f"Upsert is not supported on {dialect}")

        now = datetime.utcnow()
        stmt = insert_fn(Establishment).values(created_at=now, **values)
        overwrite = {
            column: stmt.excluded[column]
            for column in values
            if column != "source_id"
        }
        overwrite["last_update"] = now
        stmt = stmt.on_conflict_do_update(
            index_elements=[Establishment.source_id],
            set_=overwrite,
        ).returning(Establishment.id, Establishment.last_update)

        row = self.db.execute(stmt).first()
        return row.last_update is None

    def count_all(self) -> int:
        return self.db.query(func.count(Establishment.id)).scalar() or 0

    def delete_nameless(self) -> int:
        """Delete establishments whose name is NULL or blank."""
        deleted = self.db.query(Establishment).filter(
            or_(
                Establishment.name.is_(None),
                func.trim(Establishment.name) == "",
            )
        ).delete(synchronize_session=False)
        self.db.commit()
        return deleted

    def delete_all(self) -> int:
        deleted = self.db.query(Establishment).delete(synchronize_session=False)
        self.db.commit()
        return deleted

    def latest(self, limit: int = 50) -> List[Establishment]:
        """Most recently created establishments, newest first."""
        return (
            self.db.query(Establishment)
            .order_by(Establishment.created_at.desc(), Establishment.id.desc())
            .limit(limit)
            .all()
        )

    def distinct_values(self, column_name: str) -> List[str]:
        """Distinct non-blank values of one text column, trimmed."""
        column = getattr(Establishment, column_name)
        rows = self.db.query(column).filter(column.isnot(None)).distinct().all()
        values = {str(r[0]).strip() for r in rows if r[0] and str(r[0]).strip()}
        return sorted(values)


class UserRepository:
    """Data access for local user profiles."""

    def __init__(self, db: Session):
        self.db = db

    def list_users(self) -> List[User]:
        return self.db.query(User).order_by(User.created_at.asc(), User.id.asc()).all()

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    def create(self, username: str, password_hash: Optional[str]) -> User:
        user = User(username=username, password=password_hash)
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user


SavedModel = Union[Type[BookmarkedRestaurant], Type[ArchivedRestaurant]]


class SavedRestaurantRepository:
    """
    Per-user restaurant lists. The bookmark and archive tables share the
    same shape, so one repository serves both.
    """

    def __init__(self, db: Session, model: SavedModel):
        self.db = db
        self.model = model

    def list_for_user(self, user_id: int) -> List[Any]:
        return (
            self.db.query(self.model)
            .options(joinedload(self.model.restaurant))
            .filter(self.model.user_id == user_id)
            .order_by(self.model.created_at.desc(), self.model.id.desc())
            .all()
        )

    def get(self, user_id: int, restaurant_id: int) -> Optional[Any]:
        return self.db.query(self.model).filter(
            self.model.user_id == user_id,
            self.model.restaurant_id == restaurant_id,
        ).first()

    def add(self, user_id: int, restaurant_id: int) -> Any:
        entry = self.model(user_id=user_id, restaurant_id=restaurant_id)
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def remove(self, entry: Any) -> None:
        self.db.delete(entry)
        self.db.commit()
