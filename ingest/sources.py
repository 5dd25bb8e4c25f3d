"""Static definitions of the remote sites the pipeline knows how to crawl.

A source is immutable configuration: where its listing pages live, which
adapter extracts each stage, and which hosts relative asset paths resolve
against. Base URLs can be pointed elsewhere with ``<KEY>_BASE_URL``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from .errors import UnknownSource
from .types import Stage


@dataclass(frozen=True)
class Source:
    key: str
    label: str
    base_url: str
    creators_path: str
    creators_page_path: Optional[str] = None
    media_api_path: Optional[str] = None
    tag_api_path: Optional[str] = None
    asset_host: Optional[str] = None
    image_host: Optional[str] = None
    page_size: Optional[int] = None
    media_page_size: int = 18
    tag_page_size: int = 24
    adapters: dict[str, str] = field(default_factory=dict)
    # "media": one detail fetch per media item; "creator": one feed walk per creator
    enrich_scope: str = "media"

    def creators_url(self, page: int = 1) -> Optional[str]:
        if page == 1:
            return self.base_url + self.creators_path
        if not self.creators_page_path:
            return None
        return self.base_url + self.creators_page_path.format(page=page)

    def media_api_url(self, username: str) -> str:
        if not self.media_api_path:
            raise UnknownSource(f"{self.key} has no media API")
        return self.base_url + self.media_api_path.format(username=username)

    def tag_api_url(self, tag: str) -> str:
        if not self.tag_api_path:
            raise UnknownSource(f"{self.key} has no tag API")
        return self.base_url + self.tag_api_path.format(tag=tag)

    def adapter_name(self, stage: Stage | str) -> str:
        key = stage.value if isinstance(stage, Stage) else stage
        try:
            return self.adapters[key]
        except KeyError as exc:
            raise UnknownSource(f"{self.key} has no adapter for stage {key}") from exc

    @property
    def asset_base(self) -> str:
        return self.asset_host or self.base_url

    @property
    def image_base(self) -> str:
        return self.image_host or self.base_url


def _base(key: str, default: str) -> str:
    return os.getenv(f"{key.upper()}_BASE_URL", default).rstrip("/")


def _build_sources() -> dict[str, Source]:
    sources = [
        Source(
            key="nsfw247",
            label="NSFW247 actors",
            base_url=_base("nsfw247", "https://nsfw247.to"),
            creators_path="/actors/",
            creators_page_path="/actors/page/{page}/",
            adapters={
                "discovery": "wp_actor_grid",
                "media_listing": "wp_post_list",
                "details": "video_player",
            },
        ),
        Source(
            key="nsfw247_models",
            label="NSFW247 models (legacy grid)",
            base_url=_base("nsfw247_models", "https://nsfw247.to"),
            creators_path="/models",
            creators_page_path="/models?page={page}",
            asset_host="https://nsfwclips.co",
            image_host="https://nsfwpics.co",
            adapters={
                "discovery": "models_grid",
                "media_listing": "wp_post_list",
                "details": "video_player",
            },
        ),
        Source(
            key="clubeadulto",
            label="Clube Adulto actors",
            base_url=_base("clubeadulto", "https://clubeadulto.net"),
            creators_path="/actors/",
            creators_page_path="/actors/page/{page}/",
            asset_host="https://cdn2.foxvideo.club",
            adapters={
                "discovery": "wp_actor_grid",
                "media_listing": "wp_post_list",
                "details": "hls_player",
            },
        ),
        Source(
            key="xxxfollow",
            label="XXXFollow",
            base_url=_base("xxxfollow", "https://www.xxxfollow.com"),
            creators_path="/creators",
            media_api_path="/api/v1/user/{username}/post/public",
            tag_api_path="/api/v1/post/tag/{tag}",
            media_page_size=18,
            tag_page_size=24,
            adapters={
                "discovery": "next_data_creators",
                "tags": "tag_feed",
                "media_listing": "post_feed",
                "details": "post_feed_details",
            },
            enrich_scope="creator",
        ),
    ]
    return {s.key: s for s in sources}


SOURCES = _build_sources()


def get_source(key: str) -> Source:
    try:
        return SOURCES[key]
    except KeyError as exc:
        raise UnknownSource(
            f"Unknown source {key!r} (known: {', '.join(sorted(SOURCES))})"
        ) from exc
