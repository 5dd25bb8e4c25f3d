import contextlib
import json
import logging
import queue
import threading
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse

from .db import get_engine
from .errors import UnknownSource
from .logging_setup import setup_logging
from .types import Stage

logger = logging.getLogger("media-ingest")


@contextlib.asynccontextmanager
async def _lifespan(app: FastAPI):
    setup_logging()
    yield


app = FastAPI(title="Media Ingest Admin API", version="1.0", lifespan=_lifespan)

# Cancel flags of runs currently streaming, keyed by "<source>:<stage>"
_active: dict[str, threading.Event] = {}
_active_lock = threading.Lock()


def _open_fetcher(config):
    from .fetch import FetchDriver

    return FetchDriver(config)


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


@app.get("/health")
def health():
    return {"ok": True, "version": "1.0"}


@app.get("/sources")
def sources():
    from .sources import SOURCES

    return {
        "ok": True,
        "sources": [
            {"key": s.key, "label": s.label, "stages": sorted(s.adapters)}
            for s in SOURCES.values()
        ],
    }


@app.get("/status")
def status(source: Optional[str] = None):
    from .scraper_observability import latest_status
    from .store import count_summary

    engine = get_engine()
    with _active_lock:
        running = sorted(_active)
    return {
        "ok": True,
        "counts": count_summary(engine, source),
        "runs": latest_status(engine),
        "running": running,
    }


@app.get("/scrape/{source_key}/{stage}/stream")
def scrape_stream(
    source_key: str,
    stage: str,
    page_from: Optional[int] = None,
    page_to: Optional[int] = None,
    tags: Optional[str] = None,
    force: bool = False,
    creator_id: Optional[int] = None,
    media_id: Optional[int] = None,
    delay_ms: Optional[int] = None,
):
    from .config import PipelineConfig
    from .pipeline import Pipeline, ProgressEvent
    from .sources import get_source

    try:
        source = get_source(source_key)
        stage_enum = Stage(stage)
        source.adapter_name(stage_enum)
    except UnknownSource as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown stage {stage!r}") from exc

    key = f"{source.key}:{stage_enum.value}"
    cancel = threading.Event()
    with _active_lock:
        if key in _active:
            raise HTTPException(status_code=409, detail=f"{key} is already running")
        _active[key] = cancel

    config = PipelineConfig.from_env().with_overrides(
        delay_ms=delay_ms,
        page_from=page_from,
        page_to=page_to,
        force_rescrape=True if force else None,
    )
    events: "queue.Queue[Optional[ProgressEvent]]" = queue.Queue()

    def worker() -> None:
        try:
            engine = get_engine()
            with _open_fetcher(config) as fetcher:
                Pipeline(
                    engine, source, fetcher, config, cancel_event=cancel, on_event=events.put
                ).run_stage(
                    stage_enum,
                    page_from=config.page_from,
                    page_to=config.page_to,
                    tags=[t.strip() for t in (tags or "").split(",") if t.strip()],
                    force_rescrape=config.force_rescrape,
                    creator_id=creator_id,
                    media_id=media_id,
                )
        except Exception as exc:
            logger.exception("Stream run %s failed before completing", key)
            message = f"{type(exc).__name__}: {exc}"
            events.put(ProgressEvent(type="error", message=message))
            events.put(ProgressEvent(type="done", message=message, data={"state": "aborted"}))
        finally:
            with _active_lock:
                _active.pop(key, None)
            events.put(None)

    threading.Thread(target=worker, name=f"scrape-{key}", daemon=True).start()

    def stream():
        while True:
            event = events.get()
            if event is None:
                return
            yield _sse(event.to_dict())

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/scrape/cancel")
def scrape_cancel(source: Optional[str] = None, stage: Optional[str] = None):
    cancelled = []
    with _active_lock:
        for key, event in _active.items():
            src, stg = key.split(":", 1)
            if source and src != source:
                continue
            if stage and stg != stage:
                continue
            event.set()
            cancelled.append(key)
    return {"ok": True, "cancelled": cancelled}


@app.post("/admin/reset-flags")
def reset_flags(source: Optional[str] = None):
    from .progress import reset_and_recompute_flags

    engine = get_engine()
    return {"ok": True, "result": reset_and_recompute_flags(engine, source=source)}
