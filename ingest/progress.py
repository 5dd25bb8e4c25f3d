"""Per-creator stage flags.

Flags only move false -> true during pipeline runs. The one way back is
``reset_and_recompute_flags``, an explicit admin repair that clears them
and re-derives them from the media rows already stored.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Engine

from .types import Stage

logger = logging.getLogger("media-ingest")

# Discovery has no flag: every discovery run re-reads its pages
_FLAGS = {
    Stage.MEDIA_LISTING: "media_listed",
    Stage.DETAILS: "details_enriched",
}


def flag_column(stage: Stage | str) -> str:
    stage = Stage(stage)
    try:
        return _FLAGS[stage]
    except KeyError as exc:
        raise ValueError(f"Stage {stage.value} is not tracked per creator") from exc


def mark_stage_complete(engine: Engine, creator_id: int, stage: Stage | str) -> None:
    column = flag_column(stage)
    with engine.begin() as conn:
        conn.execute(
            sql_text(
                f"""
                UPDATE creators
                SET {column} = :done, {column}_at = CURRENT_TIMESTAMP,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = :id
                """
            ),
            {"id": creator_id, "done": True},
        )


def is_stage_pending(
    creator: Mapping[str, Any], stage: Stage | str, force_rescrape: bool = False
) -> bool:
    if force_rescrape or Stage(stage) not in _FLAGS:
        return True
    return not bool(creator.get(flag_column(stage)))


def reset_and_recompute_flags(
    engine: Engine, source: Optional[str] = None
) -> dict[str, dict[str, int]]:
    """Clear every stage flag, then set them again where stored media proves the stage ran.

    A creator counts as listed once it owns any media row, and as enriched
    once it owns media and none of it is still missing a poster or source.
    """
    scope = "AND source = :source" if source else ""
    params: dict[str, Any] = {"source": source, "yes": True, "no": False}
    with engine.begin() as conn:
        conn.execute(
            sql_text(
                f"""
                UPDATE creators SET
                  media_listed = :no, media_listed_at = NULL,
                  details_enriched = :no, details_enriched_at = NULL,
                  updated_at = CURRENT_TIMESTAMP
                WHERE 1 = 1 {scope}
                """
            ),
            params,
        )
        conn.execute(
            sql_text(
                f"""
                UPDATE creators SET media_listed = :yes, media_listed_at = CURRENT_TIMESTAMP
                WHERE EXISTS (SELECT 1 FROM media_items m WHERE m.creator_id = creators.id)
                {scope}
                """
            ),
            params,
        )
        conn.execute(
            sql_text(
                f"""
                UPDATE creators SET details_enriched = :yes, details_enriched_at = CURRENT_TIMESTAMP
                WHERE EXISTS (SELECT 1 FROM media_items m WHERE m.creator_id = creators.id)
                  AND NOT EXISTS (
                    SELECT 1 FROM media_items m
                    WHERE m.creator_id = creators.id
                      AND (m.poster_url IS NULL OR m.source_url IS NULL)
                  )
                {scope}
                """
            ),
            params,
        )
        rows = (
            conn.execute(
                sql_text(
                    f"""
                    SELECT source,
                           COUNT(*) AS creators,
                           SUM(CASE WHEN media_listed = :yes THEN 1 ELSE 0 END) AS media_listed,
                           SUM(CASE WHEN details_enriched = :yes THEN 1 ELSE 0 END) AS details_enriched
                    FROM creators
                    WHERE 1 = 1 {scope}
                    GROUP BY source
                    ORDER BY source
                    """
                ),
                params,
            )
            .mappings()
            .all()
        )

    out = {
        r["source"]: {
            "creators": int(r["creators"] or 0),
            "media_listed": int(r["media_listed"] or 0),
            "details_enriched": int(r["details_enriched"] or 0),
        }
        for r in rows
    }
    logger.info("Stage flags recomputed: %s", out)
    return out
