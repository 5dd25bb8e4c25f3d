import os

import pytest

from ingest.types import CreatorCandidate, MediaCandidate


def test_pg_store_lifecycle_smoke():
    db_url = os.getenv("DATABASE_URL", "")
    integration_required = os.getenv("INTEGRATION_TEST", "0") == "1"

    if "postgresql" not in db_url:
        if integration_required:
            pytest.fail(
                "INTEGRATION_TEST=1 requires DATABASE_URL to point to PostgreSQL"
            )
        pytest.skip("DATABASE_URL is not configured for PostgreSQL")

    from ingest.db import get_engine
    from ingest.progress import reset_and_recompute_flags
    from ingest.run import cmd_init
    from ingest.store import list_incomplete_media, upsert_creator, upsert_media

    engine = get_engine()
    cmd_init(engine)

    key = "pg-smoke"
    creator = upsert_creator(
        engine, key, CreatorCandidate(external_key="https://x/actors/pg/", name="PG")
    )
    again = upsert_creator(
        engine, key, CreatorCandidate(external_key="https://x/actors/pg/", name="PG")
    )
    assert again.id == creator.id and not again.is_new

    upsert_media(engine, key, creator.id, MediaCandidate(page_url="https://x/v/pg-1/"))
    assert list_incomplete_media(engine, key, creator.id)

    flags = reset_and_recompute_flags(engine, source=key)
    assert flags[key]["media_listed"] == 1
