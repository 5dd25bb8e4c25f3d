from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Stage(str, Enum):
    DISCOVERY = "discovery"
    MEDIA_LISTING = "media_listing"
    DETAILS = "details"


class FetchStrategy(str, Enum):
    RENDERED_PAGE = "rendered_page"
    JSON_API = "json_api"


# Fixed desktop fingerprint sent to every remote site
DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DESKTOP_VIEWPORT = {"width": 1920, "height": 1080}


@dataclass(frozen=True)
class FetchResult:
    url: str
    strategy: FetchStrategy
    status: Optional[int] = None
    html: Optional[str] = None
    payload: Any = None
    elapsed_ms: int = 0
    bytes_read: int = 0


@dataclass
class CreatorCandidate:
    external_key: str
    name: str
    profile_url: Optional[str] = None
    external_id: Optional[int] = None
    username: Optional[str] = None
    slug: Optional[str] = None
    avatar_url: Optional[str] = None
    cover_url: Optional[str] = None
    cover_video_url: Optional[str] = None
    gender: Optional[str] = None
    bio: Optional[str] = None
    follower_count: int = 0
    like_count: int = 0
    view_count: int = 0
    post_count: int = 0


@dataclass
class MediaCandidate:
    page_url: str
    title: Optional[str] = None
    post_id: Optional[str] = None
    media_id: Optional[str] = None
    description: Optional[str] = None
    source_url: Optional[str] = None
    sd_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    poster_url: Optional[str] = None
    duration: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    like_count: int = 0
    view_count: int = 0
    comment_count: int = 0
    has_audio: Optional[bool] = None
    posted_at: Optional[datetime] = None
    # Set by feeds that discover creator and media together (tag feeds)
    creator: Optional[CreatorCandidate] = None


@dataclass
class MediaAssets:
    """Resolved asset URLs for one media item, keyed back by post id or URL."""

    key: str
    source_url: Optional[str] = None
    poster_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    sd_url: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.source_url or self.poster_url)


@dataclass(frozen=True)
class UpsertResult:
    id: int
    is_new: bool


@dataclass
class Extraction:
    records: list = field(default_factory=list)
    # Items seen in the raw response before filtering; drives short-page detection
    raw_count: int = 0
    dropped: int = 0
    cursor: Any = None
    diagnostics: dict[str, int] = field(default_factory=dict)

    def note(self, key: str, n: int = 1) -> None:
        self.diagnostics[key] = self.diagnostics.get(key, 0) + n
