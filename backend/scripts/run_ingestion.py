"""CLI job to synchronise the restaurants table with OpenDataSoft."""

import argparse
import json
import logging
import sys
from typing import Optional

from juice_finder.core.exceptions import JuiceFinderError
from juice_finder.db.database import SessionLocal, init_db
from juice_finder.services.ingestion import Reconciler, delete_nameless

logger = logging.getLogger(__name__)


def run_ingestion_job(*, mode: str, cleanup: bool, limit: Optional[int] = None) -> dict:
    init_db()
    db = SessionLocal()
    try:
        reconciler = Reconciler(db)
        if limit is not None:
            stats = reconciler.run_trial(max_valid=limit)
        elif mode == "bulk":
            stats = reconciler.run_bulk()
        else:
            stats = reconciler.run_paginated()
        result = {"mode": stats.mode, "stats": stats.to_dict()}
        if cleanup:
            result["cleanup"] = delete_nameless(db)
        return result
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the OpenDataSoft restaurant ingestion")
    parser.add_argument(
        "--mode",
        choices=["bulk", "paginated"],
        default="bulk",
        help="bulk: one JSON export download; paginated: records endpoint, capped at the offset ceiling",
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Delete nameless establishments after the run",
    )
    parser.add_argument(
        "--limit",
        dest="limit",
        type=int,
        help="Trial sync: stop after this many valid records (implies paginated)",
    )
    return parser


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args()

    try:
        result = run_ingestion_job(mode=args.mode, cleanup=args.cleanup, limit=args.limit)
    except JuiceFinderError as e:
        logger.error("Ingestion failed: %s", json.dumps(e.to_dict(), ensure_ascii=False))
        return 1

    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
