"""
Ingestion reconciler for the OpenDataSoft osm-france-food-service dataset.

Two run modes feed the same filter -> map -> upsert pipeline:

  - bulk:      one download of the full JSON export, processed in batches
  - paginated: offset-based pages from the records endpoint, one page at a
               time with a fixed pause between fetches

A record that fails to upsert is counted and logged; it never aborts the run.
A fetch failure or an unreachable database aborts the run.
"""

from __future__ import annotations

import json
import logging
import random
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional

import requests
from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from juice_finder.core.config import settings
from juice_finder.core.exceptions import (
    ConflictError, JuiceFinderError, StoreUnavailableError, UpstreamError,
)
from juice_finder.core.monitoring import track_performance
from juice_finder.db.repositories import EstablishmentRepository

logger = logging.getLogger(__name__)
_SESSION = requests.Session()

# French overseas regions are out of scope for the directory
EXCLUDED_REGIONS = frozenset({
    "Guadeloupe",
    "Martinique",
    "Guyane",
    "La Réunion",
    "Mayotte",
    "Saint-Pierre-et-Miquelon",
    "Wallis-et-Futuna",
    "Polynésie française",
    "Nouvelle-Calédonie",
    "Saint-Barthélemy",
    "Saint-Martin",
    "Collectivité de Saint-Martin",
    "Terres australes et antarctiques françaises",
})

RUN_LOCK_NAME = "establishment-ingestion"
_RUN_LOCKS: Dict[str, threading.Lock] = {RUN_LOCK_NAME: threading.Lock()}


@contextmanager
def run_lock(name: str = RUN_LOCK_NAME) -> Iterator[None]:
    """Hold the named run lock; fail fast if another run in this process holds it."""
    lock = _RUN_LOCKS.setdefault(name, threading.Lock())
    if not lock.acquire(blocking=False):
        raise ConflictError(
            "Une synchronisation est déjà en cours",
            error="Synchronisation déjà en cours",
        )
    try:
        yield
    finally:
        lock.release()


# ---------------------------------------------------------------------------
# Record filter and mapping
# ---------------------------------------------------------------------------

def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


def is_valid_record(record: Dict[str, Any]) -> bool:
    """Named, reachable (phone or email) and not in an overseas region."""
    name = record.get("name")
    if not name or not str(name).strip():
        return False
    if not (record.get("phone") or record.get("email")):
        return False
    region = record.get("meta_name_reg")
    if region and region in EXCLUDED_REGIONS:
        return False
    return True


def derive_source_id(record: Dict[str, Any]) -> str:
    """
    The feed's OSM id, or a synthesized key. Synthesized keys contain a
    timestamp and a random part, so such records are re-inserted on every run.
    """
    osm_id = record.get("meta_osm_id")
    if osm_id:
        return str(osm_id)
    return (
        f"manual-{record.get('name')}-{record.get('meta_name_com')}-"
        f"{int(time.time() * 1000)}-{random.random()}"
    )


def _cuisine(value: Any) -> Optional[str]:
    if isinstance(value, (list, tuple)):
        joined = ", ".join(str(v) for v in value if v)
        return joined or None
    return _text(value)


def _coordinates(record: Dict[str, Any]):
    point = record.get("meta_geo_point") or {}
    if not isinstance(point, dict):
        return None, None
    try:
        lat = float(point["lat"])
        lon = float(point["lon"])
    except (KeyError, TypeError, ValueError):
        return None, None
    return lat, lon


def map_record(record: Dict[str, Any], source_id: str) -> Dict[str, Any]:
    """Feed record -> restaurants column values."""
    lat, lon = _coordinates(record)
    return {
        "source_id": source_id,
        "osm_id": _text(record.get("meta_osm_id")),
        "osm_type": None,
        "name": _text(record.get("name")),
        "type": _text(record.get("type")),
        "cuisine": _cuisine(record.get("cuisine")),
        "phone": _text(record.get("phone")),
        "email": _text(record.get("email")),
        "website": _text(record.get("website")),
        "street": _text(record.get("street")),
        "housenumber": _text(record.get("housenumber")),
        # meta_code_com is filled far more often than OSM's postcode tag
        "postcode": _text(record.get("meta_code_com")) or _text(record.get("postcode")),
        "city": _text(record.get("meta_name_com")),
        "department": _text(record.get("meta_name_dep")),
        "region": _text(record.get("meta_name_reg")),
        "opening_hours": _text(record.get("opening_hours")),
        "wheelchair": _text(record.get("wheelchair")),
        "delivery": _text(record.get("delivery")),
        "takeaway": _text(record.get("takeaway")),
        "outdoor_seating": _text(record.get("outdoor_seating")),
        "lat": lat,
        "lon": lon,
    }


# ---------------------------------------------------------------------------
# Upstream client
# ---------------------------------------------------------------------------

def fetch_page(offset: int, limit: int) -> Dict[str, Any]:
    """One page of the records endpoint: {"total_count": int, "results": [...]}."""
    params = {"limit": limit, "offset": offset}
    try:
        response = _SESSION.get(
            settings.opendata_records_url,
            params=params,
            timeout=settings.page_timeout_seconds,
        )
        response.raise_for_status()
        return response.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Page fetch failed at offset {offset}: {e}")
        raise UpstreamError(str(e)) from e


def fetch_export() -> List[Dict[str, Any]]:
    """Full JSON export, streamed so the size ceiling is enforced while reading."""
    max_bytes = settings.bulk_max_bytes
    try:
        response = _SESSION.get(
            settings.opendata_export_url,
            timeout=settings.bulk_timeout_seconds,
            stream=True,
        )
        response.raise_for_status()
        chunks, size = [], 0
        for chunk in response.iter_content(chunk_size=1024 * 1024):
            size += len(chunk)
            if size > max_bytes:
                response.close()
                raise UpstreamError(f"Export larger than {max_bytes} bytes")
            chunks.append(chunk)
        payload = json.loads(b"".join(chunks))
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Export download failed: {e}")
        raise UpstreamError(str(e)) from e

    if not isinstance(payload, list):
        raise UpstreamError("Export is not a JSON array")
    return payload


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

@dataclass
class RunStats:
    mode: str
    fetched: int = 0
    valid: int = 0
    inserted: int = 0
    updated: int = 0
    errors: int = 0
    total_in_store: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """API shape: total_in_store is reported as `total`."""
        data = asdict(self)
        data["total"] = data.pop("total_in_store")
        data.pop("mode")
        return data


class Reconciler:
    """
    One instance per run. Statistics live on the returned RunStats, never in
    module state.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = EstablishmentRepository(db)

    def _check_store(self) -> None:
        try:
            self.db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Database unreachable, aborting run: {e}")
            raise StoreUnavailableError(str(e)) from e

    def _count_store(self) -> int:
        try:
            return self.repo.count_all()
        except SQLAlchemyError as e:
            raise StoreUnavailableError(str(e)) from e

    def _upsert_one(self, record: Dict[str, Any], stats: RunStats) -> None:
        try:
            values = map_record(record, derive_source_id(record))
            inserted = self.repo.upsert(values)
            self.db.commit()
        except (OperationalError, InterfaceError) as e:
            self.db.rollback()
            logger.error(f"Database connection lost during run: {e}")
            raise StoreUnavailableError(str(e)) from e
        except Exception as e:  # noqa: BLE001
            self.db.rollback()
            stats.errors += 1
            logger.error(f"Upsert failed for {record.get('name')!r}: {e}")
            return
        if inserted:
            stats.inserted += 1
        else:
            stats.updated += 1

    def process(self, records: Iterable[Dict[str, Any]], stats: RunStats,
                max_valid: Optional[int] = None) -> None:
        """Filter and upsert one page or batch, record by record."""
        valid = [r for r in records if is_valid_record(r)]
        if max_valid is not None:
            valid = valid[:max(0, max_valid - stats.valid)]
        stats.valid += len(valid)
        for record in valid:
            self._upsert_one(record, stats)

    def _run(self, mode: str, body) -> RunStats:
        with run_lock():
            self._check_store()
            stats = RunStats(mode=mode)
            try:
                body(stats)
                stats.total_in_store = self._count_store()
            except JuiceFinderError as e:
                # Operators still see how far the run got
                e.extra.setdefault("stats", stats.to_dict())
                raise
            logger.info(
                f"Ingestion ({mode}) finished: fetched={stats.fetched} valid={stats.valid} "
                f"inserted={stats.inserted} updated={stats.updated} errors={stats.errors} "
                f"total={stats.total_in_store}"
            )
            return stats

    @track_performance("bulk ingestion")
    def run_bulk(self) -> RunStats:
        """Download the full export once, then process it in fixed-size batches."""
        return self._run("bulk", self._bulk)

    @track_performance("paginated ingestion")
    def run_paginated(self) -> RunStats:
        """
        Walk the records endpoint page by page until it is exhausted, the
        offset ceiling is reached, or the reported total has been received.
        """
        return self._run("paginated", self._paginated)

    @track_performance("trial ingestion")
    def run_trial(self, max_valid: Optional[int] = None) -> RunStats:
        """
        Paginated run that stops once `max_valid` valid records have been
        upserted (default `settings.trial_sync_size`).
        """
        if max_valid is None:
            max_valid = settings.trial_sync_size
        return self._run("trial", lambda stats: self._paginated(stats, max_valid=max_valid))

    def _bulk(self, stats: RunStats) -> None:
        logger.info(f"Downloading export from {settings.opendata_export_url}")
        records = fetch_export()
        stats.fetched = len(records)
        logger.info(f"{stats.fetched} records received")

        batch_size = max(1, settings.ingest_batch_size)
        total_batches = (len(records) + batch_size - 1) // batch_size
        for start in range(0, len(records), batch_size):
            self.process(records[start:start + batch_size], stats)
            logger.info(
                f"Batch {start // batch_size + 1}/{total_batches} done - "
                f"{stats.inserted} inserted, {stats.updated} updated, {stats.errors} errors"
            )

    def _paginated(self, stats: RunStats, max_valid: Optional[int] = None) -> None:
        page_size = max(1, settings.ingest_page_size)
        ceiling = settings.ingest_offset_ceiling
        offset = 0

        while offset < ceiling:
            logger.info(f"Fetching page {offset // page_size + 1} (offset {offset})")
            page = fetch_page(offset, page_size)
            records = page.get("results") or []
            if not records:
                break

            stats.fetched += len(records)
            self.process(records, stats, max_valid=max_valid)
            logger.info(
                f"Page done: {len(records)} received - "
                f"{stats.inserted} inserted, {stats.updated} updated, {stats.errors} errors"
            )

            if max_valid is not None and stats.valid >= max_valid:
                break
            total_count = page.get("total_count")
            if total_count is not None and stats.fetched >= int(total_count):
                break
            offset += page_size
            if offset >= ceiling:
                logger.warning(f"Offset ceiling {ceiling} reached, stopping")
                break
            time.sleep(settings.ingest_page_delay_seconds)


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

def delete_nameless(db: Session) -> Dict[str, int]:
    repo = EstablishmentRepository(db)
    try:
        deleted = repo.delete_nameless()
        remaining = repo.count_all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreUnavailableError(str(e)) from e
    logger.info(f"Cleanup: {deleted} nameless establishments deleted, {remaining} remaining")
    return {"deleted": deleted, "remaining": remaining}


def reset_store(db: Session) -> int:
    try:
        deleted = EstablishmentRepository(db).delete_all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreUnavailableError(str(e)) from e
    logger.warning(f"Reset: {deleted} establishments deleted")
    return deleted
