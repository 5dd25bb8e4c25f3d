from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Engine

logger = logging.getLogger("media-ingest")


def new_run_id() -> str:
    return str(uuid.uuid4())


def log_event(event: str, **payload: Any) -> None:
    logger.info(
        "SCRAPER_%s %s", event, json.dumps(payload, default=str, sort_keys=True)
    )


def upsert_run(
    engine: Engine,
    *,
    run_id: str,
    scraper: str,
    status: str,
    processed: int = 0,
    skipped: int = 0,
    rows_found: int = 0,
    rows_inserted: int = 0,
    errors: int = 0,
    fetch_count: int = 0,
    last_error: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    with engine.begin() as conn:
        conn.execute(
            sql_text(
                """
                INSERT INTO scraper_runs
                (run_id, scraper, status, processed, skipped, rows_found, rows_inserted, errors, fetch_count, last_error, details_json)
                VALUES (:run_id, :scraper, :status, :processed, :skipped, :rows_found, :rows_inserted, :errors, :fetch_count, :last_error, :details)
                ON CONFLICT (run_id, scraper) DO UPDATE SET
                  finished_at = CASE WHEN EXCLUDED.status IN ('completed', 'aborted') THEN CURRENT_TIMESTAMP ELSE scraper_runs.finished_at END,
                  status = EXCLUDED.status,
                  processed = EXCLUDED.processed,
                  skipped = EXCLUDED.skipped,
                  rows_found = EXCLUDED.rows_found,
                  rows_inserted = EXCLUDED.rows_inserted,
                  errors = EXCLUDED.errors,
                  fetch_count = EXCLUDED.fetch_count,
                  last_error = EXCLUDED.last_error,
                  details_json = EXCLUDED.details_json
                """
            ),
            {
                "run_id": run_id,
                "scraper": scraper,
                "status": status,
                "processed": processed,
                "skipped": skipped,
                "rows_found": rows_found,
                "rows_inserted": rows_inserted,
                "errors": errors,
                "fetch_count": fetch_count,
                "last_error": last_error,
                "details": json.dumps(details or {}, default=str),
            },
        )


def latest_status(engine: Engine) -> list[dict[str, Any]]:
    """Most recent run per scraper (``<source>:<stage>``)."""
    with engine.begin() as conn:
        rows = (
            conn.execute(
                sql_text(
                    """
                SELECT r.scraper, r.run_id, r.started_at, r.finished_at, r.status,
                       r.processed, r.skipped, r.rows_found, r.rows_inserted,
                       r.errors, r.fetch_count, r.last_error, r.details_json
                FROM scraper_runs r
                JOIN (
                  SELECT scraper, MAX(started_at) AS started_at
                  FROM scraper_runs
                  GROUP BY scraper
                ) latest
                  ON latest.scraper = r.scraper AND latest.started_at = r.started_at
                ORDER BY r.scraper
                """
                )
            )
            .mappings()
            .all()
        )
    out: list[dict[str, Any]] = []
    for row in rows:
        data = dict(row)
        data["details"] = json.loads(data.pop("details_json") or "{}")
        data["last_success"] = (
            data["finished_at"] if data["status"] == "completed" else None
        )
        out.append(data)
    return out


class StepTimer:
    def __init__(self) -> None:
        self.started = time.perf_counter()

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)
