import os

# Must be set before juice_finder.core.config is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ADMIN_API_KEY"] = "test-admin-key"

import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from juice_finder.core.rate_limiting import limiter
from juice_finder.db.database import SessionLocal, engine
from juice_finder.db.models import Base, Establishment
from juice_finder.main import app
from juice_finder.services import ingestion, lookups

limiter.enabled = False

PARIS = (48.8566, 2.3522)
LYON = (45.7640, 4.8357)


@pytest.fixture(autouse=True)
def db():
    Base.metadata.create_all(bind=engine)
    lookups.clear_cache()
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def unreachable_db():
    """Session bound to a database file that cannot be opened."""
    dead_engine = create_engine("sqlite:////nonexistent-dir/juice_finder.db")
    session = sessionmaker(bind=dead_engine)()
    yield session
    session.close()
    dead_engine.dispose()


@pytest.fixture
def admin_headers():
    return {"X-API-Key": "test-admin-key"}


@pytest.fixture
def make_restaurant(db):
    """Insert one establishment directly; returns the ORM object."""
    counter = {"n": 0}

    def _make(name="Chez Paul", **fields):
        counter["n"] += 1
        values = {
            "source_id": f"node/{counter['n']}",
            "name": name,
            "type": "restaurant",
            "phone": "+33 1 23 45 67 89",
            "city": "Paris",
            "department": "Paris",
            "region": "Île-de-France",
            "lat": PARIS[0],
            "lon": PARIS[1],
        }
        values.update(fields)
        restaurant = Establishment(**values)
        db.add(restaurant)
        db.commit()
        db.refresh(restaurant)
        return restaurant

    return _make


def feed_record(osm_id="node/1", name="Chez Paul", **overrides):
    """One record as served by the osm-france-food-service dataset."""
    record = {
        "meta_osm_id": osm_id,
        "name": name,
        "type": "restaurant",
        "cuisine": ["french"],
        "phone": "+33 1 23 45 67 89",
        "email": None,
        "website": "https://chez-paul.example",
        "street": "Rue de Charonne",
        "housenumber": "13",
        "postcode": "75011",
        "meta_code_com": "75111",
        "meta_name_com": "Paris",
        "meta_name_dep": "Paris",
        "meta_name_reg": "Île-de-France",
        "opening_hours": "Mo-Fr 12:00-14:30; Sa 19:00-23:00",
        "meta_geo_point": {"lat": PARIS[0], "lon": PARIS[1]},
    }
    record.update(overrides)
    return record


@pytest.fixture
def feed():
    return feed_record


# ---------------------------------------------------------------------------
# Upstream HTTP doubles
# ---------------------------------------------------------------------------

class DummyResponse:
    def __init__(self, status_code=200, payload=None, body=None):
        self.status_code = status_code
        self._payload = payload
        self._body = body if body is not None else json.dumps(payload).encode()
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise ingestion.requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start:start + chunk_size]

    def close(self):
        self.closed = True


class DummySession:
    """
    Records every GET. Page responses are served from `pages` (keyed by
    offset); the export response from `export`.
    """

    def __init__(self):
        self.calls = []
        self.pages = {}
        self.export = None
        self.error = None

    def get(self, url, params=None, timeout=None, stream=False):
        self.calls.append((url, params, timeout))
        if self.error is not None:
            raise self.error
        if stream:
            return self.export
        return self.pages.get(params["offset"], DummyResponse(payload={"total_count": 0, "results": []}))


@pytest.fixture(autouse=True)
def patch_session(monkeypatch):
    session = DummySession()
    monkeypatch.setattr(ingestion, "_SESSION", session)
    return session


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(ingestion.time, "sleep", lambda seconds: calls.append(seconds))
    return calls
