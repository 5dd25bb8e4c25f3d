import argparse
import json
import logging
import os
import sys

from .config import PipelineConfig
from .db import get_engine
from .errors import IngestError
from .logging_setup import setup_logging
from .schema import apply_schema
from .types import Stage

logger = logging.getLogger("media-ingest")


def _tags(raw: str | None) -> list[str]:
    raw = raw if raw is not None else os.getenv("SCRAPE_TAGS", "")
    return [t.strip() for t in raw.split(",") if t.strip()]


def _config(args) -> PipelineConfig:
    return PipelineConfig.from_env().with_overrides(
        delay_ms=args.delay_ms,
        page_from=args.page_from,
        page_to=args.page_to,
        force_rescrape=True if args.force else None,
    )


def run_stage(engine, source_key: str, stage: Stage, config: PipelineConfig, **kwargs):
    from .fetch import FetchDriver
    from .pipeline import Pipeline
    from .sources import get_source

    source = get_source(source_key)
    with FetchDriver(config) as driver:
        pipeline = Pipeline(engine, source, driver, config)
        return pipeline.run_stage(stage, **kwargs)


def cmd_init(engine):
    apply_schema(engine)
    logger.info("Schema applied")


def cmd_discover(engine, args):
    config = _config(args)
    return run_stage(
        engine,
        args.source,
        Stage.DISCOVERY,
        config,
        page_from=config.page_from,
        page_to=config.page_to,
        tags=_tags(args.tags),
    )


def cmd_list_media(engine, args):
    config = _config(args)
    return run_stage(
        engine,
        args.source,
        Stage.MEDIA_LISTING,
        config,
        force_rescrape=config.force_rescrape,
        creator_id=args.creator_id,
    )


def cmd_enrich(engine, args):
    return run_stage(
        engine,
        args.source,
        Stage.DETAILS,
        _config(args),
        media_id=args.media_id,
        creator_id=args.creator_id,
    )


def cmd_reset_flags(engine, source_key: str | None):
    from .progress import reset_and_recompute_flags

    return reset_and_recompute_flags(engine, source=source_key)


def cmd_status(engine, source_key: str | None):
    from .scraper_observability import latest_status
    from .store import count_summary

    return {"counts": count_summary(engine, source_key), "runs": latest_status(engine)}


def cmd_sources():
    from .sources import SOURCES

    return [
        {"key": s.key, "label": s.label, "base_url": s.base_url, "stages": sorted(s.adapters)}
        for s in SOURCES.values()
    ]


def parse_args(argv=None):
    ap = argparse.ArgumentParser(prog="ingest")
    ap.add_argument(
        "command",
        choices=[
            "init",
            "discover",
            "list-media",
            "enrich",
            "reset-flags",
            "status",
            "sources",
        ],
    )
    ap.add_argument("--source", type=str, default=os.getenv("SCRAPE_SOURCE"))
    ap.add_argument("--page-from", type=int, default=None)
    ap.add_argument("--page-to", type=int, default=None)
    ap.add_argument(
        "--tags",
        type=str,
        default=None,
        help="Comma-separated tags for tag-feed discovery (default: SCRAPE_TAGS)",
    )
    ap.add_argument(
        "--force",
        action="store_true",
        help="Re-list creators whose media were already listed",
    )
    ap.add_argument("--creator-id", type=int, default=None)
    ap.add_argument("--media-id", type=int, default=None)
    ap.add_argument(
        "--delay-ms",
        type=int,
        default=None,
        help="Pause between items (default: SCRAPE_DELAY or 2000)",
    )
    return ap.parse_args(argv)


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv=None) -> int:
    setup_logging()
    args = parse_args(argv)

    if args.command == "sources":
        _print(cmd_sources())
        return 0

    engine = get_engine()
    if args.command == "init":
        cmd_init(engine)
        return 0
    if args.command == "reset-flags":
        _print(cmd_reset_flags(engine, args.source))
        return 0
    if args.command == "status":
        _print(cmd_status(engine, args.source))
        return 0

    if not args.source:
        logger.error("--source is required for %s", args.command)
        return 2

    try:
        if args.command == "discover":
            report = cmd_discover(engine, args)
        elif args.command == "list-media":
            report = cmd_list_media(engine, args)
        else:
            report = cmd_enrich(engine, args)
    except IngestError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1

    _print(report.to_dict())
    return 1 if report.fatal_error else 0


if __name__ == "__main__":
    sys.exit(main())
