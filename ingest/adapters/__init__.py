"""
Extraction adapters.

One adapter per (site layout, entity type). Adapters are pure: they read a
FetchResult and return an Extraction, leaving persistence to the store.
New layouts are added as new adapter classes and registered here.
"""
from __future__ import annotations

from ..sources import Source
from ..errors import UnknownSource
from ..types import Extraction, FetchResult, Stage
from .base import Adapter
from .feeds import (
    NextDataCreatorsAdapter,
    PostFeedAdapter,
    PostFeedDetailsAdapter,
    TagFeedAdapter,
)
from .html import (
    HlsPlayerAdapter,
    ModelsGridAdapter,
    VideoPlayerAdapter,
    WpActorGridAdapter,
    WpPostListAdapter,
)

ADAPTERS: dict[str, type[Adapter]] = {
    cls.name: cls
    for cls in (
        WpActorGridAdapter,
        ModelsGridAdapter,
        WpPostListAdapter,
        VideoPlayerAdapter,
        HlsPlayerAdapter,
        NextDataCreatorsAdapter,
        TagFeedAdapter,
        PostFeedAdapter,
        PostFeedDetailsAdapter,
    )
}


def get_adapter(source: Source, stage: Stage | str) -> Adapter:
    name = source.adapter_name(stage)
    try:
        return ADAPTERS[name](source)
    except KeyError as exc:
        raise UnknownSource(f"Adapter {name!r} is not registered") from exc


def extract(result: FetchResult, adapter_kind: Stage | str, source: Source) -> Extraction:
    return get_adapter(source, adapter_kind).extract(result)


__all__ = ["ADAPTERS", "Adapter", "extract", "get_adapter"]
