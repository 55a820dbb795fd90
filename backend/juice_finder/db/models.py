"""
Database models -- SQLAlchemy ORM definitions.
restaurants is filled by the ingestion reconciler from the OpenDataSoft
osm-france-food-service dataset. Compatible with both PostgreSQL and SQLite.
"""

from datetime import datetime

from sqlalchemy import (
    Column, DateTime, Float, ForeignKey, Integer, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Establishment(Base):
    """
    One food/drink venue (restaurant, bar, cafe, fast_food, pub, ...).
    source_id is the upsert key: the OSM id from the feed, or a synthesized
    "manual-..." key when the feed record has none.
    """
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True)
    source_id = Column(Text, unique=True, nullable=False, index=True)
    osm_id = Column(Text)
    osm_type = Column(Text)

    name = Column(Text, index=True)
    type = Column(Text, index=True)
    cuisine = Column(Text)

    phone = Column(Text)
    email = Column(Text)
    website = Column(Text)

    street = Column(Text)
    housenumber = Column(Text)
    postcode = Column(Text)
    city = Column(Text, index=True)
    department = Column(Text, index=True)
    region = Column(Text, index=True)

    # "yes" / "no" / anything else means unknown
    wheelchair = Column(Text)
    delivery = Column(Text)
    takeaway = Column(Text)
    outdoor_seating = Column(Text)

    opening_hours = Column(Text)

    lat = Column(Float)
    lon = Column(Float)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_update = Column(DateTime)


class User(Base):
    """Local profile. password is a bcrypt hash, or NULL for open profiles."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(Text, unique=True, nullable=False)
    password = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class BookmarkedRestaurant(Base):
    __tablename__ = "bookmarked_restaurants"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    restaurant = relationship(Establishment)

    __table_args__ = (
        UniqueConstraint("user_id", "restaurant_id", name="uq_bookmark_user_restaurant"),
    )


class ArchivedRestaurant(Base):
    __tablename__ = "archived_restaurants"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    restaurant = relationship(Establishment)

    __table_args__ = (
        UniqueConstraint("user_id", "restaurant_id", name="uq_archive_user_restaurant"),
    )
