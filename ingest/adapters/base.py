from __future__ import annotations

import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar
from urllib.parse import urlparse

from ..sources import Source
from ..types import Extraction, FetchResult, FetchStrategy

T = TypeVar("T")

# Lookups that fail on a missing node or key just mean "try the next layout"
_LOOKUP_ERRORS = (AttributeError, KeyError, IndexError, TypeError, ValueError)


class Adapter(ABC):
    """Turns one fetched resource into normalized candidate records.

    Adapters read only from the ``FetchResult``; they never touch the
    database or the network.
    """

    name: str = ""
    kind: str = ""
    strategy: FetchStrategy = FetchStrategy.RENDERED_PAGE
    ready_selectors: tuple[str, ...] = ()
    require_ready: bool = False

    def __init__(self, source: Source) -> None:
        self.source = source

    @abstractmethod
    def extract(self, result: FetchResult) -> Extraction: ...


def first_of(node: Any, *strategies: Callable[[Any], Optional[T]]) -> Optional[T]:
    """Try each strategy in order; the first non-empty value wins."""
    for strategy in strategies:
        try:
            value = strategy(node)
        except _LOOKUP_ERRORS:
            value = None
        if value not in (None, "", [], {}):
            return value
    return None


def first_layout(
    node: Any, layouts: Sequence[Callable[[Any], Iterable[Any]]]
) -> tuple[int, list[Any]]:
    """Return (layout index, items) for the first layout that matches anything."""
    for idx, layout in enumerate(layouts):
        try:
            items = [item for item in layout(node) if item is not None]
        except _LOOKUP_ERRORS:
            items = []
        if items:
            return idx, items
    return -1, []


def normalize_url(url: Optional[str], base: str) -> Optional[str]:
    if not url:
        return None
    url = url.strip()
    if not url or url.startswith(("data:", "javascript:", "#")):
        return None
    if url.startswith("//"):
        return "https:" + url
    if urlparse(url).scheme in ("http", "https"):
        return url
    return base.rstrip("/") + "/" + url.lstrip("/")


def same_url(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.rstrip("/") == b.rstrip("/")


def slug_from_url(url: str) -> Optional[str]:
    parts = [p for p in urlparse(url).path.split("/") if p]
    return parts[-1] if parts else None


def slugify(text: str) -> str:
    return re.sub(r"[@\s]+", "-", text.strip().lower())


def img_src(img: Any) -> Optional[str]:
    """Image URL across lazy-loading conventions; placeholder data URIs are skipped."""
    if img is None:
        return None

    def attr(name: str) -> Callable[[Any], Optional[str]]:
        def get(tag: Any) -> Optional[str]:
            value = tag.get(name)
            if value and not value.startswith("data:"):
                return value
            return None

        return get

    return first_of(
        img,
        attr("src"),
        attr("data-src"),
        attr("data-lazy-src"),
        attr("data-large"),
        lambda tag: tag.get("srcset", "").split(" ")[0],
    )


def text_of(node: Any) -> Optional[str]:
    if node is None:
        return None
    value = node.get_text(" ", strip=True)
    return value or None


def to_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def parse_duration(text: Optional[str]) -> Optional[int]:
    """'12:34' or '1:02:03' to seconds; plain numbers pass through."""
    if not text:
        return None
    text = text.strip()
    if re.fullmatch(r"\d+(:\d{1,2}){1,2}", text):
        seconds = 0
        for part in text.split(":"):
            seconds = seconds * 60 + int(part)
        return seconds
    return to_int(text, default=None)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
