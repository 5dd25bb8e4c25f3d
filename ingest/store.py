"""Idempotent persistence of creators and media keyed by natural identity.

Upserts look the natural key up first and only insert when it is absent.
A concurrent insert of the same key surfaces as an ``IntegrityError`` on
our insert; that is resolved by reading the winner's row back and
reporting ``is_new=False``. Existing rows are never rewritten by an
upsert: counters, assets and stage flags change through the dedicated
calls below.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import PersistenceConflict, PersistenceFailure
from .progress import flag_column
from .types import CreatorCandidate, MediaAssets, MediaCandidate, Stage, UpsertResult

logger = logging.getLogger("media-ingest")

_POST_MEDIA_IN_URL = re.compile(r"/(\d+)-(\d+)")

_INCOMPLETE = "(m.poster_url IS NULL OR m.source_url IS NULL)"


def _scalar(engine: Engine, sql: str, params: dict[str, Any]) -> Optional[int]:
    with engine.begin() as conn:
        return conn.execute(sql_text(sql), params).scalar()


def _find_creator_id(engine: Engine, source_key: str, external_key: str) -> Optional[int]:
    return _scalar(
        engine,
        "SELECT id FROM creators WHERE source = :source AND external_key = :key",
        {"source": source_key, "key": external_key},
    )


def _find_media_id(engine: Engine, source_key: str, candidate: MediaCandidate) -> Optional[int]:
    if candidate.post_id and candidate.media_id:
        found = _scalar(
            engine,
            """
            SELECT id FROM media_items
            WHERE source = :source AND post_id = :post_id AND media_id = :media_id
            """,
            {
                "source": source_key,
                "post_id": candidate.post_id,
                "media_id": candidate.media_id,
            },
        )
        if found is not None:
            return found
    return _scalar(
        engine,
        "SELECT id FROM media_items WHERE source = :source AND page_url = :page_url",
        {"source": source_key, "page_url": candidate.page_url},
    )


def _insert(engine: Engine, insert_sql: str, params: dict, what: str) -> None:
    try:
        with engine.begin() as conn:
            conn.execute(sql_text(insert_sql), params)
    except IntegrityError as exc:
        raise PersistenceConflict(f"{what}: {exc.orig}") from exc
    except SQLAlchemyError as exc:
        raise PersistenceFailure(f"{what}: {type(exc).__name__}: {exc}") from exc


def _insert_or_resolve(engine: Engine, insert_sql: str, params: dict, lookup, what: str) -> UpsertResult:
    try:
        _insert(engine, insert_sql, params, what)
    except PersistenceConflict as exc:
        existing = lookup()
        if existing is None:
            raise PersistenceFailure(f"constraint violation without a matching row: {exc}") from exc
        logger.debug("%s inserted concurrently; using existing id=%s", what, existing)
        return UpsertResult(id=int(existing), is_new=False)

    new_id = lookup()
    if new_id is None:
        raise PersistenceFailure(f"{what}: row missing after insert")
    return UpsertResult(id=int(new_id), is_new=True)


def upsert_creator(engine: Engine, source_key: str, candidate: CreatorCandidate) -> UpsertResult:
    def lookup() -> Optional[int]:
        return _find_creator_id(engine, source_key, candidate.external_key)

    try:
        existing = lookup()
    except SQLAlchemyError as exc:
        raise PersistenceFailure(f"creator lookup failed: {exc}") from exc
    if existing is not None:
        return UpsertResult(id=int(existing), is_new=False)

    return _insert_or_resolve(
        engine,
        """
        INSERT INTO creators
        (source, external_key, external_id, username, name, slug, profile_url,
         avatar_url, cover_url, cover_video_url, gender, bio,
         follower_count, like_count, view_count, post_count)
        VALUES
        (:source, :external_key, :external_id, :username, :name, :slug, :profile_url,
         :avatar_url, :cover_url, :cover_video_url, :gender, :bio,
         :follower_count, :like_count, :view_count, :post_count)
        """,
        {
            "source": source_key,
            "external_key": candidate.external_key,
            "external_id": candidate.external_id,
            "username": candidate.username,
            "name": candidate.name,
            "slug": candidate.slug,
            "profile_url": candidate.profile_url,
            "avatar_url": candidate.avatar_url,
            "cover_url": candidate.cover_url,
            "cover_video_url": candidate.cover_video_url,
            "gender": candidate.gender,
            "bio": candidate.bio,
            "follower_count": candidate.follower_count or 0,
            "like_count": candidate.like_count or 0,
            "view_count": candidate.view_count or 0,
            "post_count": candidate.post_count or 0,
        },
        lookup,
        f"creator {source_key}:{candidate.external_key}",
    )


def upsert_media(
    engine: Engine, source_key: str, creator_id: int, candidate: MediaCandidate
) -> UpsertResult:
    def lookup() -> Optional[int]:
        return _find_media_id(engine, source_key, candidate)

    try:
        existing = lookup()
    except SQLAlchemyError as exc:
        raise PersistenceFailure(f"media lookup failed: {exc}") from exc
    if existing is not None:
        return UpsertResult(id=int(existing), is_new=False)

    return _insert_or_resolve(
        engine,
        """
        INSERT INTO media_items
        (creator_id, source, post_id, media_id, page_url, title, description,
         source_url, sd_url, thumbnail_url, poster_url, duration, width, height,
         like_count, view_count, comment_count, has_audio, posted_at)
        VALUES
        (:creator_id, :source, :post_id, :media_id, :page_url, :title, :description,
         :source_url, :sd_url, :thumbnail_url, :poster_url, :duration, :width, :height,
         :like_count, :view_count, :comment_count, :has_audio, :posted_at)
        """,
        {
            "creator_id": creator_id,
            "source": source_key,
            "post_id": candidate.post_id,
            "media_id": candidate.media_id,
            "page_url": candidate.page_url,
            "title": candidate.title,
            "description": candidate.description,
            "source_url": candidate.source_url,
            "sd_url": candidate.sd_url,
            "thumbnail_url": candidate.thumbnail_url,
            "poster_url": candidate.poster_url,
            "duration": candidate.duration,
            "width": candidate.width,
            "height": candidate.height,
            "like_count": candidate.like_count or 0,
            "view_count": candidate.view_count or 0,
            "comment_count": candidate.comment_count or 0,
            "has_audio": candidate.has_audio,
            "posted_at": candidate.posted_at,
        },
        lookup,
        f"media {source_key}:{candidate.page_url}",
    )


def update_media_assets(engine: Engine, media_id: int, assets: MediaAssets) -> bool:
    """Fill resolved asset URLs; fields the extraction left empty keep their value."""
    try:
        with engine.begin() as conn:
            res = conn.execute(
                sql_text(
                    """
                    UPDATE media_items SET
                      source_url = COALESCE(:source_url, source_url),
                      poster_url = COALESCE(:poster_url, poster_url),
                      thumbnail_url = COALESCE(thumbnail_url, :thumbnail_url),
                      sd_url = COALESCE(:sd_url, sd_url),
                      updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id
                    """
                ),
                {
                    "id": media_id,
                    "source_url": assets.source_url,
                    "poster_url": assets.poster_url,
                    "thumbnail_url": assets.thumbnail_url,
                    "sd_url": assets.sd_url,
                },
            )
    except SQLAlchemyError as exc:
        raise PersistenceFailure(f"media {media_id}: asset update failed: {exc}") from exc
    return res.rowcount > 0


def refresh_creator_counters(engine: Engine, creator_id: int) -> dict[str, int]:
    """Recompute media-derived counters from the persisted media rows."""
    with engine.begin() as conn:
        row = (
            conn.execute(
                sql_text(
                    """
                    SELECT COUNT(*) AS media_count,
                           COUNT(DISTINCT COALESCE(post_id, page_url)) AS post_count,
                           COALESCE(SUM(like_count), 0) AS like_count,
                           COALESCE(SUM(view_count), 0) AS view_count
                    FROM media_items
                    WHERE creator_id = :id
                    """
                ),
                {"id": creator_id},
            )
            .mappings()
            .one()
        )
        counters = {k: int(v or 0) for k, v in row.items()}
        conn.execute(
            sql_text(
                """
                UPDATE creators SET
                  media_count = :media_count,
                  post_count = :post_count,
                  like_count = :like_count,
                  view_count = :view_count,
                  updated_at = CURRENT_TIMESTAMP
                WHERE id = :id
                """
            ),
            {"id": creator_id, **counters},
        )
    return counters


def update_creator_profile_counters(
    engine: Engine, creator_id: int, *, follower_count: Optional[int] = None
) -> None:
    """Counters only the source knows (followers); media-derived ones are refreshed above."""
    if follower_count is None:
        return
    with engine.begin() as conn:
        conn.execute(
            sql_text(
                """
                UPDATE creators
                SET follower_count = :follower_count, updated_at = CURRENT_TIMESTAMP
                WHERE id = :id
                """
            ),
            {"id": creator_id, "follower_count": int(follower_count)},
        )


def get_creator(engine: Engine, creator_id: int) -> Optional[dict[str, Any]]:
    with engine.begin() as conn:
        row = (
            conn.execute(sql_text("SELECT * FROM creators WHERE id = :id"), {"id": creator_id})
            .mappings()
            .first()
        )
    return dict(row) if row else None


def list_creators(
    engine: Engine, source_key: str, pending_stage: Stage | None = None
) -> list[dict[str, Any]]:
    """Creators of a source in ascending id order, optionally only those with ``pending_stage`` unset."""
    where = "source = :source"
    params: dict[str, Any] = {"source": source_key}
    if pending_stage is not None:
        column = flag_column(pending_stage)
        where += f" AND {column} = :done"
        params["done"] = False
    with engine.begin() as conn:
        rows = (
            conn.execute(sql_text(f"SELECT * FROM creators WHERE {where} ORDER BY id"), params)
            .mappings()
            .all()
        )
    return [dict(r) for r in rows]


def get_media(engine: Engine, media_id: int) -> Optional[dict[str, Any]]:
    with engine.begin() as conn:
        row = (
            conn.execute(sql_text("SELECT * FROM media_items WHERE id = :id"), {"id": media_id})
            .mappings()
            .first()
        )
    return dict(row) if row else None


def list_incomplete_media(
    engine: Engine, source_key: str, creator_id: Optional[int] = None
) -> list[dict[str, Any]]:
    """Media still missing a poster or a playable source, eligible for enrichment."""
    where = f"m.source = :source AND {_INCOMPLETE}"
    params: dict[str, Any] = {"source": source_key}
    if creator_id is not None:
        where += " AND m.creator_id = :creator_id"
        params["creator_id"] = creator_id
    with engine.begin() as conn:
        rows = (
            conn.execute(
                sql_text(f"SELECT m.* FROM media_items m WHERE {where} ORDER BY m.id"),
                params,
            )
            .mappings()
            .all()
        )
    return [dict(r) for r in rows]


def media_key(media: dict[str, Any]) -> Optional[str]:
    """``post-media`` key of a feed media row, read from the canonical URL when the columns are empty."""
    if media.get("post_id") and media.get("media_id"):
        return f"{media['post_id']}-{media['media_id']}"
    match = _POST_MEDIA_IN_URL.search(media.get("page_url") or "")
    return f"{match.group(1)}-{match.group(2)}" if match else None


def count_summary(engine: Engine, source_key: Optional[str] = None) -> list[dict[str, Any]]:
    where = "WHERE c.source = :source" if source_key else ""
    with engine.begin() as conn:
        rows = (
            conn.execute(
                sql_text(
                    f"""
                    SELECT c.source AS source,
                           COUNT(DISTINCT c.id) AS creators,
                           COUNT(DISTINCT CASE WHEN c.media_listed = :yes THEN c.id END) AS media_listed,
                           COUNT(DISTINCT CASE WHEN c.details_enriched = :yes THEN c.id END) AS details_enriched,
                           COUNT(m.id) AS media,
                           COUNT(CASE WHEN m.id IS NOT NULL AND {_INCOMPLETE} THEN 1 END) AS incomplete_media
                    FROM creators c
                    LEFT JOIN media_items m ON m.creator_id = c.id
                    {where}
                    GROUP BY c.source
                    ORDER BY c.source
                    """
                ),
                {"source": source_key, "yes": True},
            )
            .mappings()
            .all()
        )
    return [{k: (v if k == "source" else int(v or 0)) for k, v in r.items()} for r in rows]
