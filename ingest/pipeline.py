"""Stage orchestrator.

A run walks one stage of one source over its items in a stable order
(pages ascending, creators and media by ascending id). Every item goes
through fetch, extract and persist on its own; whatever one item raises is
logged and counted and the run moves on, unless the error is fatal for the
whole run (no browser). Cancellation is honoured between items only.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.engine import Engine

from . import store
from .adapters import get_adapter
from .config import PipelineConfig
from .errors import IngestError, UnknownSource, UnknownTarget
from .fetch import Fetcher
from .progress import is_stage_pending, mark_stage_complete
from .scraper_observability import StepTimer, log_event, new_run_id, upsert_run
from .sources import Source
from .types import CreatorCandidate, Extraction, FetchResult, FetchStrategy, Stage, UpsertResult

logger = logging.getLogger("media-ingest")

# Upper bound on feed pages walked for one creator
MAX_FEED_PAGES = 500


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class ItemPhase(str, Enum):
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    PERSISTING = "persisting"
    ADVANCING = "advancing"


@dataclass
class RunReport:
    source: str
    stage: str
    run_id: str = field(default_factory=new_run_id)
    state: RunState = RunState.IDLE
    processed: int = 0
    skipped: int = 0
    found: int = 0
    saved: int = 0
    duplicates: int = 0
    errors: int = 0
    fetches: int = 0
    fatal_error: Optional[str] = None
    diagnostics: dict[str, int] = field(default_factory=dict)

    def note(self, key: str, n: int = 1) -> None:
        if n:
            self.diagnostics[key] = self.diagnostics.get(key, 0) + n

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["state"] = self.state.value
        return out


@dataclass(frozen=True)
class ProgressEvent:
    type: str  # log | error | done
    message: str
    data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out


class _Abort(Exception):
    pass


class Pipeline:
    def __init__(
        self,
        engine: Engine,
        source: Source,
        fetcher: Fetcher,
        config: Optional[PipelineConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
        on_event: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> None:
        self.engine = engine
        self.source = source
        self.fetcher = fetcher
        self.config = config or PipelineConfig()
        self.sleep = sleep
        self.cancel_event = cancel_event or threading.Event()
        self.on_event = on_event
        self.phase: Optional[ItemPhase] = None
        self._report: Optional[RunReport] = None
        self._paced = False

    # ------------------------------------------------------------------
    # run scaffolding

    @property
    def scraper(self) -> str:
        return f"{self.source.key}:{self._report.stage}"

    def _emit(self, type_: str, message: str, data: Optional[dict[str, Any]] = None) -> None:
        if type_ == "error":
            logger.warning(message)
        else:
            logger.info(message)
        if self.on_event is not None:
            self.on_event(ProgressEvent(type=type_, message=message, data=data))

    def _start(self, stage: Stage) -> RunReport:
        report = RunReport(source=self.source.key, stage=stage.value)
        report.state = RunState.RUNNING
        self._report = report
        self._paced = False
        log_event("START", scraper=self.scraper, run_id=report.run_id)
        upsert_run(self.engine, run_id=report.run_id, scraper=self.scraper, status="running")
        self._emit("log", f"{self.source.label}: {stage.value} started")
        return report

    def _finish(self) -> RunReport:
        report = self._report
        if report.state == RunState.RUNNING:
            report.state = RunState.COMPLETED
        self.phase = None
        upsert_run(
            self.engine,
            run_id=report.run_id,
            scraper=self.scraper,
            status=report.state.value,
            processed=report.processed,
            skipped=report.skipped,
            rows_found=report.found,
            rows_inserted=report.saved,
            errors=report.errors,
            fetch_count=report.fetches,
            last_error=report.fatal_error,
            details={"duplicates": report.duplicates, **report.diagnostics},
        )
        log_event("END", scraper=self.scraper, **report.to_dict())
        summary = (
            f"{report.stage} {report.state.value}: processed={report.processed} "
            f"skipped={report.skipped} found={report.found} saved={report.saved} "
            f"duplicates={report.duplicates} errors={report.errors}"
        )
        if report.fatal_error:
            summary += f" fatal={report.fatal_error}"
        self._emit("done", summary, report.to_dict())
        return report

    def _before_item(self) -> None:
        """Cancellation check and pacing; only ever called between items."""
        if self.cancel_event.is_set():
            self._report.state = RunState.ABORTED
            self._emit("log", "Run cancelled")
            raise _Abort()
        if self._paced:
            self.sleep(self.config.delay_s)
        self._paced = True

    def _item_failed(self, exc: Exception, item: Any, url: Optional[str]) -> None:
        report = self._report
        error_type = type(exc).__name__
        url = url or getattr(exc, "url", None)
        log_event(
            "ITEM_ERROR",
            scraper=self.scraper,
            run_id=report.run_id,
            item=item,
            url=url,
            phase=self.phase.value if self.phase else None,
            error_type=error_type,
            error=str(exc),
        )
        if isinstance(exc, IngestError) and exc.fatal:
            report.state = RunState.ABORTED
            report.fatal_error = f"{error_type}: {exc}"
            self._emit("error", f"Fatal: {report.fatal_error}")
            raise _Abort() from exc
        report.errors += 1
        if not isinstance(exc, IngestError):
            logger.exception("Unexpected error on %s", item)
        self._emit("error", f"{item}: {error_type}: {exc}", {"item": item, "url": url})

    def _fetch(self, url: str, stage: Stage | str, params: Optional[dict] = None) -> tuple[FetchResult, Extraction]:
        adapter = get_adapter(self.source, stage)
        self.phase = ItemPhase.FETCHING
        timer = StepTimer()
        self._report.fetches += 1
        result = self.fetcher.open(
            url,
            adapter.strategy,
            params=params,
            ready_selectors=adapter.ready_selectors,
            require_ready=adapter.require_ready,
        )
        log_event(
            "FETCH",
            scraper=self.scraper,
            url=url,
            params=params,
            status=result.status,
            bytes=result.bytes_read,
            latency_ms=timer.elapsed_ms(),
        )
        self.phase = ItemPhase.EXTRACTING
        extraction = adapter.extract(result)
        log_event(
            "PARSE",
            scraper=self.scraper,
            url=url,
            items_found=len(extraction.records),
            raw=extraction.raw_count,
            dropped=extraction.dropped,
            diagnostics=extraction.diagnostics,
        )
        self._report.note("dropped", extraction.dropped)
        for key, n in extraction.diagnostics.items():
            self._report.note(key, n)
        return result, extraction

    def _run(self, stage: Stage, body: Callable[[], None]) -> RunReport:
        self._start(stage)
        try:
            body()
        except _Abort:
            pass
        except Exception as exc:
            report = self._report
            report.state = RunState.ABORTED
            report.fatal_error = f"{type(exc).__name__}: {exc}"
            logger.exception("%s run failed", self.scraper)
            log_event("RUN_ERROR", scraper=self.scraper, run_id=report.run_id, error=report.fatal_error)
            self._emit("error", f"Fatal: {report.fatal_error}")
        return self._finish()

    # ------------------------------------------------------------------
    # discovery

    def run_discovery(
        self,
        page_from: Optional[int] = None,
        page_to: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> RunReport:
        page_from = page_from or self.config.page_from
        page_to = page_to or self.config.page_to
        tags = [t for t in (tags or []) if t]

        def body() -> None:
            if tags and self.source.tag_api_path:
                for tag in tags:
                    self._discover_tag(tag, page_from, page_to)
                return
            if tags:
                self._emit("log", f"{self.source.key} has no tag feed, ignoring tags {', '.join(tags)}")
            self._discover_pages(page_from, page_to)

        return self._run(Stage.DISCOVERY, body)

    def _discover_pages(self, page_from: int, page_to: int) -> None:
        for page in range(page_from, page_to + 1):
            url = self.source.creators_url(page)
            if url is None:
                self._emit("log", f"No page {page} for {self.source.key}; discovery done")
                return
            self._before_item()
            try:
                more = self._discover_page(page, url)
            except _Abort:
                raise
            except Exception as exc:
                self._item_failed(exc, item=f"page {page}", url=url)
                continue
            if not more:
                return

    def _discover_page(self, page: int, url: str) -> bool:
        report = self._report
        _, extraction = self._fetch(url, Stage.DISCOVERY)
        records = extraction.records
        report.processed += 1
        if not records:
            self._emit("log", f"Page {page}: no creators, stopping")
            return False

        self.phase = ItemPhase.PERSISTING
        saved = 0
        for candidate in records:
            res = self._save_creator(candidate)
            saved += res.is_new
        report.found += len(records)
        report.saved += saved
        report.duplicates += len(records) - saved
        log_event("WRITE", scraper=self.scraper, table="creators", rows_inserted=saved, rows_seen=len(records))
        self._emit(
            "log",
            f"Page {page}: {len(records)} creators, {saved} new",
            {"page": page, "found": len(records), "saved": saved},
        )

        self.phase = ItemPhase.ADVANCING
        page_size = self.source.page_size
        if page_size and extraction.raw_count < page_size:
            self._emit("log", f"Page {page} is short ({extraction.raw_count}<{page_size}), stopping")
            return False
        return True

    def _save_creator(self, candidate: CreatorCandidate) -> UpsertResult:
        res = store.upsert_creator(self.engine, self.source.key, candidate)
        if not res.is_new and candidate.follower_count:
            store.update_creator_profile_counters(
                self.engine, res.id, follower_count=candidate.follower_count
            )
        return res

    def _discover_tag(self, tag: str, page_from: int, page_to: int) -> None:
        url = self.source.tag_api_url(tag)
        start_time = int(time.time())
        seen_creators: set[int] = set()
        for page in range(page_from, page_to + 1):
            self._before_item()
            params = {
                "genders": "cf",
                "period": "all",
                "limit": self.source.tag_page_size,
                "page": page,
                "start_time": start_time,
            }
            try:
                more = self._discover_tag_page(tag, page, url, params, seen_creators)
            except _Abort:
                raise
            except Exception as exc:
                self._item_failed(exc, item=f"tag {tag} page {page}", url=url)
                continue
            if not more:
                break
        for creator_id in sorted(seen_creators):
            store.refresh_creator_counters(self.engine, creator_id)

    def _discover_tag_page(
        self, tag: str, page: int, url: str, params: dict, seen: set[int]
    ) -> bool:
        report = self._report
        _, extraction = self._fetch(url, "tags", params=params)
        report.processed += 1
        if extraction.raw_count == 0:
            self._emit("log", f"Tag {tag} page {page}: empty, stopping")
            return False

        self.phase = ItemPhase.PERSISTING
        new_media = 0
        for media in extraction.records:
            creator = self._save_creator(media.creator)
            if creator.id not in seen:
                seen.add(creator.id)
                report.found += 1
                if creator.is_new:
                    report.saved += 1
                else:
                    report.duplicates += 1
            new_media += store.upsert_media(self.engine, self.source.key, creator.id, media).is_new
        report.note("media_found", len(extraction.records))
        report.note("media_saved", new_media)
        self._emit(
            "log",
            f"Tag {tag} page {page}: {len(extraction.records)} videos, {new_media} new",
            {"tag": tag, "page": page},
        )

        self.phase = ItemPhase.ADVANCING
        return extraction.raw_count >= self.source.tag_page_size

    # ------------------------------------------------------------------
    # media listing

    def run_listing(
        self, force_rescrape: Optional[bool] = None, creator_id: Optional[int] = None
    ) -> RunReport:
        force = self.config.force_rescrape if force_rescrape is None else force_rescrape
        if creator_id is not None:
            creators = [self._require_creator(creator_id)]
            # a named target is always re-listed
            force = True
        else:
            creators = store.list_creators(self.engine, self.source.key)

        def body() -> None:
            for creator in creators:
                if not is_stage_pending(creator, Stage.MEDIA_LISTING, force):
                    self._report.skipped += 1
                    log_event("SKIP", scraper=self.scraper, creator_id=creator["id"], reason="media_listed")
                    continue
                self._before_item()
                try:
                    self._list_creator(creator)
                except _Abort:
                    raise
                except Exception as exc:
                    self._item_failed(
                        exc, item=f"creator {creator['id']} ({creator['name']})", url=creator.get("profile_url")
                    )

        return self._run(Stage.MEDIA_LISTING, body)

    def _require_creator(self, creator_id: int) -> dict[str, Any]:
        creator = store.get_creator(self.engine, creator_id)
        if creator is None or creator["source"] != self.source.key:
            raise UnknownTarget(f"No {self.source.key} creator with id {creator_id}")
        return creator

    def _list_creator(self, creator: dict[str, Any]) -> None:
        adapter = get_adapter(self.source, Stage.MEDIA_LISTING)
        if adapter.strategy == FetchStrategy.JSON_API:
            candidates = self._walk_feed(creator, Stage.MEDIA_LISTING)
        else:
            if not creator.get("profile_url"):
                raise UnknownTarget(f"creator {creator['id']} has no profile URL")
            _, extraction = self._fetch(creator["profile_url"], Stage.MEDIA_LISTING)
            candidates = extraction.records

        report = self._report
        self.phase = ItemPhase.PERSISTING
        saved = 0
        for candidate in candidates:
            saved += store.upsert_media(self.engine, self.source.key, creator["id"], candidate).is_new
        report.found += len(candidates)
        report.saved += saved
        report.duplicates += len(candidates) - saved
        log_event("WRITE", scraper=self.scraper, table="media_items", creator_id=creator["id"], rows_inserted=saved)

        self.phase = ItemPhase.ADVANCING
        store.refresh_creator_counters(self.engine, creator["id"])
        mark_stage_complete(self.engine, creator["id"], Stage.MEDIA_LISTING)
        report.processed += 1
        self._emit(
            "log",
            f"{creator['name']}: {len(candidates)} videos, {saved} new",
            {"creator_id": creator["id"], "found": len(candidates), "saved": saved},
        )

    def _walk_feed(self, creator: dict[str, Any], stage: Stage, wanted: Optional[set[str]] = None) -> list:
        """Page through a creator's post feed with the ``before_time`` cursor.

        Stops on an empty or short page, a missing or repeated cursor, or
        once every id in ``wanted`` has been seen.
        """
        username = creator.get("username")
        if not username:
            raise UnknownTarget(f"creator {creator['id']} has no username")
        url = self.source.media_api_url(username)
        limit = self.source.media_page_size
        records: list = []
        cursor = None
        for page in range(1, MAX_FEED_PAGES + 1):
            if page > 1:
                self.sleep(self.config.page_delay_s)
            params: dict[str, Any] = {"limit": limit, "sort_by": "recent"}
            if cursor:
                params["before_time"] = cursor
            _, extraction = self._fetch(url, stage, params=params)
            records.extend(extraction.records)
            if wanted is not None:
                wanted = wanted - {r.key for r in extraction.records}
                if not wanted:
                    break
            if extraction.raw_count < limit or not extraction.cursor or extraction.cursor == cursor:
                break
            cursor = extraction.cursor
        return records

    # ------------------------------------------------------------------
    # detail enrichment

    def run_enrichment(
        self, media_id: Optional[int] = None, creator_id: Optional[int] = None
    ) -> RunReport:
        if media_id is not None:
            media = store.get_media(self.engine, media_id)
            if media is None or media["source"] != self.source.key:
                raise UnknownTarget(f"No {self.source.key} media with id {media_id}")
            pending = [media]
        else:
            if creator_id is not None:
                self._require_creator(creator_id)
            pending = store.list_incomplete_media(self.engine, self.source.key, creator_id)

        if self.source.enrich_scope == "creator":
            body = lambda: self._enrich_by_creator(pending)  # noqa: E731
        else:
            body = lambda: self._enrich_by_media(pending)  # noqa: E731
        return self._run(Stage.DETAILS, body)

    def _enrich_by_media(self, pending: list[dict[str, Any]]) -> None:
        touched: set[int] = set()
        for media in pending:
            self._before_item()
            touched.add(media["creator_id"])
            try:
                self._enrich_media(media)
            except _Abort:
                raise
            except Exception as exc:
                self._item_failed(exc, item=f"media {media['id']}", url=media["page_url"])
        self._mark_enriched(touched)

    def _enrich_media(self, media: dict[str, Any]) -> None:
        report = self._report
        _, extraction = self._fetch(media["page_url"], Stage.DETAILS)
        report.processed += 1
        if not extraction.records:
            report.note("no_assets")
            self._emit("log", f"media {media['id']}: no assets found")
            return
        self.phase = ItemPhase.PERSISTING
        assets = extraction.records[0]
        report.found += 1
        if store.update_media_assets(self.engine, media["id"], assets):
            report.saved += 1
        self._emit(
            "log",
            f"media {media['id']}: poster={'yes' if assets.poster_url else 'no'} "
            f"source={'yes' if assets.source_url else 'no'}",
            {"media_id": media["id"]},
        )

    def _enrich_by_creator(self, pending: list[dict[str, Any]]) -> None:
        by_creator: dict[int, list[dict[str, Any]]] = {}
        for media in pending:
            by_creator.setdefault(media["creator_id"], []).append(media)

        for creator_id in sorted(by_creator):
            self._before_item()
            try:
                self._enrich_creator(self._require_creator(creator_id), by_creator[creator_id])
            except _Abort:
                raise
            except Exception as exc:
                self._item_failed(exc, item=f"creator {creator_id}", url=None)
        self._mark_enriched(set(by_creator))

    def _enrich_creator(self, creator: dict[str, Any], media: list[dict[str, Any]]) -> None:
        report = self._report
        by_key: dict[str, dict[str, Any]] = {}
        for row in media:
            key = store.media_key(row)
            if key is None:
                report.skipped += 1
                report.note("no_media_key")
                continue
            by_key[key] = row
        if not by_key:
            return

        assets = self._walk_feed(creator, Stage.DETAILS, wanted=set(by_key))
        report.processed += 1
        self.phase = ItemPhase.PERSISTING
        updated = 0
        for item in assets:
            row = by_key.pop(item.key, None)
            if row is None:
                continue
            report.found += 1
            updated += store.update_media_assets(self.engine, row["id"], item)
        report.saved += updated
        report.note("not_in_feed", len(by_key))
        self._emit(
            "log",
            f"{creator['name']}: {updated} of {len(media)} videos enriched",
            {"creator_id": creator["id"], "updated": updated},
        )

    def _mark_enriched(self, creator_ids: set[int]) -> None:
        for creator_id in sorted(creator_ids):
            if not store.list_incomplete_media(self.engine, self.source.key, creator_id):
                mark_stage_complete(self.engine, creator_id, Stage.DETAILS)

    # ------------------------------------------------------------------

    def run_stage(self, stage: Stage | str, **kwargs: Any) -> RunReport:
        stage = Stage(stage)
        if stage == Stage.DISCOVERY:
            return self.run_discovery(
                kwargs.get("page_from"), kwargs.get("page_to"), kwargs.get("tags")
            )
        if stage == Stage.MEDIA_LISTING:
            return self.run_listing(kwargs.get("force_rescrape"), kwargs.get("creator_id"))
        if stage == Stage.DETAILS:
            return self.run_enrichment(kwargs.get("media_id"), kwargs.get("creator_id"))
        raise UnknownSource(f"Unsupported stage {stage}")
