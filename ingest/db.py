import os
from functools import lru_cache

from sqlalchemy import create_engine, event, text as sql_text
from sqlalchemy.engine import URL, Engine, make_url

_DB_URL_ALIASES = (
    "DATABASE_URL",
    "DATABASE_PRIVATE_URL",
    "POSTGRES_URL",
    "POSTGRESQL_URL",
)


def _resolve_database_url() -> str:
    for key in _DB_URL_ALIASES:
        value = os.getenv(key)
        if value:
            return value
    raise RuntimeError(
        "DATABASE_URL is not set (checked aliases: DATABASE_URL, DATABASE_PRIVATE_URL, POSTGRES_URL, POSTGRESQL_URL)"
    )


def _normalize_url(url: URL) -> URL:
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+psycopg")

    query = dict(url.query)
    sslmode = query.get("sslmode")
    explicit_sslmode = os.getenv("DB_SSLMODE", "").strip()
    require_ssl = os.getenv("REQUIRE_DB_SSL", "0").strip().lower() in {
        "1",
        "true",
        "yes",
        "on",
    }
    if not sslmode and explicit_sslmode and url.drivername.startswith("postgresql"):
        query["sslmode"] = explicit_sslmode
    elif not sslmode and require_ssl and url.drivername.startswith("postgresql"):
        query["sslmode"] = "require"
    if query != dict(url.query):
        url = url.set(query=query)
    return url


def _enable_sqlite_foreign_keys(dbapi_conn, _record) -> None:
    # Creator -> media ownership relies on ON DELETE CASCADE
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def engine_for_url(db_url: str | URL) -> Engine:
    url = _normalize_url(make_url(db_url))
    engine = create_engine(url, pool_pre_ping=True, future=True)
    if url.get_backend_name() == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


@lru_cache(maxsize=None)
def _shared_engine(db_url: str) -> Engine:
    return engine_for_url(db_url)


def get_engine() -> Engine:
    """Process-wide engine for the configured URL; callers share one pool."""
    return _shared_engine(_resolve_database_url())


def check_db_connectivity(engine: Engine) -> None:
    with engine.begin() as conn:
        conn.execute(sql_text("SELECT 1"))
