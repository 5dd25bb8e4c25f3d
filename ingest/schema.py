from __future__ import annotations

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Engine

_PG_DDL = [
    """
    CREATE TABLE IF NOT EXISTS creators (
      id bigserial PRIMARY KEY,
      source text NOT NULL,
      external_key text NOT NULL,
      external_id bigint,
      username text,
      name text NOT NULL,
      slug text,
      profile_url text,
      avatar_url text,
      cover_url text,
      cover_video_url text,
      gender text,
      bio text,
      follower_count integer NOT NULL DEFAULT 0,
      like_count integer NOT NULL DEFAULT 0,
      view_count integer NOT NULL DEFAULT 0,
      post_count integer NOT NULL DEFAULT 0,
      media_count integer NOT NULL DEFAULT 0,
      media_listed boolean NOT NULL DEFAULT false,
      media_listed_at timestamptz,
      details_enriched boolean NOT NULL DEFAULT false,
      details_enriched_at timestamptz,
      created_at timestamptz NOT NULL DEFAULT now(),
      updated_at timestamptz NOT NULL DEFAULT now(),
      UNIQUE (source, external_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS media_items (
      id bigserial PRIMARY KEY,
      creator_id bigint NOT NULL REFERENCES creators(id) ON DELETE CASCADE,
      source text NOT NULL,
      post_id text,
      media_id text,
      page_url text NOT NULL,
      title text,
      description text,
      source_url text,
      sd_url text,
      thumbnail_url text,
      poster_url text,
      duration integer,
      width integer,
      height integer,
      like_count integer NOT NULL DEFAULT 0,
      view_count integer NOT NULL DEFAULT 0,
      comment_count integer NOT NULL DEFAULT 0,
      has_audio boolean,
      posted_at timestamptz,
      created_at timestamptz NOT NULL DEFAULT now(),
      updated_at timestamptz NOT NULL DEFAULT now(),
      UNIQUE (source, post_id, media_id),
      UNIQUE (source, page_url)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_creators_media_listed ON creators (source, media_listed)",
    "CREATE INDEX IF NOT EXISTS idx_media_items_creator ON media_items (creator_id)",
    """
    CREATE TABLE IF NOT EXISTS scraper_runs (
      run_id text NOT NULL,
      scraper text NOT NULL,
      started_at timestamptz NOT NULL DEFAULT now(),
      finished_at timestamptz,
      status text NOT NULL,
      processed integer NOT NULL DEFAULT 0,
      skipped integer NOT NULL DEFAULT 0,
      rows_found integer NOT NULL DEFAULT 0,
      rows_inserted integer NOT NULL DEFAULT 0,
      errors integer NOT NULL DEFAULT 0,
      fetch_count integer NOT NULL DEFAULT 0,
      last_error text,
      details_json text NOT NULL DEFAULT '{}',
      PRIMARY KEY (run_id, scraper)
    )
    """,
]

_SQLITE_DDL = [
    """
    CREATE TABLE IF NOT EXISTS creators (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      source TEXT NOT NULL,
      external_key TEXT NOT NULL,
      external_id INTEGER,
      username TEXT,
      name TEXT NOT NULL,
      slug TEXT,
      profile_url TEXT,
      avatar_url TEXT,
      cover_url TEXT,
      cover_video_url TEXT,
      gender TEXT,
      bio TEXT,
      follower_count INTEGER NOT NULL DEFAULT 0,
      like_count INTEGER NOT NULL DEFAULT 0,
      view_count INTEGER NOT NULL DEFAULT 0,
      post_count INTEGER NOT NULL DEFAULT 0,
      media_count INTEGER NOT NULL DEFAULT 0,
      media_listed BOOLEAN NOT NULL DEFAULT 0,
      media_listed_at TIMESTAMP,
      details_enriched BOOLEAN NOT NULL DEFAULT 0,
      details_enriched_at TIMESTAMP,
      created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
      updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
      UNIQUE (source, external_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS media_items (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      creator_id INTEGER NOT NULL REFERENCES creators(id) ON DELETE CASCADE,
      source TEXT NOT NULL,
      post_id TEXT,
      media_id TEXT,
      page_url TEXT NOT NULL,
      title TEXT,
      description TEXT,
      source_url TEXT,
      sd_url TEXT,
      thumbnail_url TEXT,
      poster_url TEXT,
      duration INTEGER,
      width INTEGER,
      height INTEGER,
      like_count INTEGER NOT NULL DEFAULT 0,
      view_count INTEGER NOT NULL DEFAULT 0,
      comment_count INTEGER NOT NULL DEFAULT 0,
      has_audio BOOLEAN,
      posted_at TIMESTAMP,
      created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
      updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
      UNIQUE (source, post_id, media_id),
      UNIQUE (source, page_url)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_creators_media_listed ON creators (source, media_listed)",
    "CREATE INDEX IF NOT EXISTS idx_media_items_creator ON media_items (creator_id)",
    """
    CREATE TABLE IF NOT EXISTS scraper_runs (
      run_id TEXT NOT NULL,
      scraper TEXT NOT NULL,
      started_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
      finished_at TIMESTAMP,
      status TEXT NOT NULL,
      processed INTEGER NOT NULL DEFAULT 0,
      skipped INTEGER NOT NULL DEFAULT 0,
      rows_found INTEGER NOT NULL DEFAULT 0,
      rows_inserted INTEGER NOT NULL DEFAULT 0,
      errors INTEGER NOT NULL DEFAULT 0,
      fetch_count INTEGER NOT NULL DEFAULT 0,
      last_error TEXT,
      details_json TEXT NOT NULL DEFAULT '{}',
      PRIMARY KEY (run_id, scraper)
    )
    """,
]


def schema_statements(engine: Engine) -> list[str]:
    if engine.dialect.name.startswith("postgres"):
        return _PG_DDL
    return _SQLITE_DDL


def apply_schema(engine: Engine) -> None:
    with engine.begin() as conn:
        for stmt in schema_statements(engine):
            conn.exec_driver_sql(stmt)
