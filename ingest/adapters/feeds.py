"""Adapters over JSON: embedded Next.js page data and the public post feeds."""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from bs4 import BeautifulSoup

from ..errors import ExtractionIncomplete
from ..types import (
    CreatorCandidate,
    Extraction,
    FetchResult,
    FetchStrategy,
    MediaAssets,
    MediaCandidate,
)
from .base import Adapter, first_of, normalize_url, parse_timestamp, to_int

_USER_IN_FEED_URL = re.compile(r"/user/([^/?#]+)/post")
_BLUR_SUFFIX = re.compile(r"_blur\.(jpg|webp)$")


def blur_derived_assets(blur_url: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """(playable, poster) guessed from a ``*_blur.jpg`` preview URL.

    Follows the CDN naming the feed used when this was written; nothing in
    the payload guarantees it, so it is always the last strategy tried.
    """
    if not blur_url:
        return None, None
    clean = blur_url.split("?")[0]
    if not _BLUR_SUFFIX.search(clean):
        return None, None
    stem = _BLUR_SUFFIX.sub("", clean)
    return f"{stem}.mp4", f"{stem}_small.jpg"


def _playable(media: dict) -> Optional[str]:
    return first_of(
        media,
        lambda m: m["uhd_url"],
        lambda m: m["fhd_url"],
        lambda m: m["sd_url"],
        lambda m: m["url"],
        lambda m: blur_derived_assets(m["blur_url"])[0],
    )


def _poster(media: dict) -> Optional[str]:
    return first_of(
        media,
        lambda m: m["start_webp_url"],
        lambda m: m["start_url"],
        lambda m: blur_derived_assets(m["blur_url"])[1],
    )


def _thumbnail(media: dict) -> Optional[str]:
    return first_of(
        media,
        lambda m: m["thumb_webp_url"],
        lambda m: m["thumb_url"],
        lambda m: blur_derived_assets(m["blur_url"])[1],
    )


def _creator_from_user(user: dict, base_url: str) -> CreatorCandidate:
    user_id = to_int(user.get("id"), default=None)
    username = user.get("username")
    if user_id is None or not username:
        raise ExtractionIncomplete(f"user without id or username: {user.get('id')!r}")
    return CreatorCandidate(
        external_key=str(user_id),
        external_id=user_id,
        username=username,
        name=user.get("display_name") or username,
        profile_url=f"{base_url}/{username}",
        avatar_url=normalize_url(user.get("public_avatar_url"), base_url),
        cover_url=normalize_url(user.get("public_cover_picture_url"), base_url),
        cover_video_url=normalize_url(user.get("public_cover_video_url"), base_url),
        gender=user.get("gender"),
        bio=user.get("bio"),
        follower_count=to_int(user.get("follower_count")),
        like_count=to_int(user.get("like_count")),
        view_count=to_int(user.get("view_count")),
        post_count=to_int(user.get("post_count")),
    )


class NextDataCreatorsAdapter(Adapter):
    """Creators embedded in the ``__NEXT_DATA__`` script of a rendered page."""

    kind = "creators"
    name = "next_data_creators"
    ready_selectors = ("script#__NEXT_DATA__",)

    def extract(self, result: FetchResult) -> Extraction:
        out = Extraction()
        soup = BeautifulSoup(result.html or "", "html.parser")
        tag = soup.find("script", id="__NEXT_DATA__")
        if tag is None:
            out.note("no_next_data")
            return out
        try:
            data = json.loads(tag.string or tag.get_text())
        except ValueError:
            out.note("invalid_next_data")
            return out

        entries = first_of(
            data,
            lambda d: d["props"]["pageProps"]["sidemenu-most-popular"],
            lambda d: d["props"]["pageProps"]["creators"],
            lambda d: d["props"]["pageProps"]["users"],
        ) or []
        out.raw_count = len(entries)
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("type", "model") != "model":
                out.note("not_model")
                continue
            try:
                creator = _creator_from_user(entry, self.source.base_url)
            except ExtractionIncomplete:
                out.dropped += 1
                continue
            out.records.append(creator)
        return out


class _PostFeedMixin:
    source: Any

    def _media_candidate(
        self, item: dict, post: dict, media: dict, username: Optional[str]
    ) -> MediaCandidate:
        post_id = post.get("id")
        media_id = media.get("id")
        if post_id is None or media_id is None or not username:
            raise ExtractionIncomplete(f"post {post_id!r} media {media_id!r} user {username!r}")
        base = self.source.base_url
        return MediaCandidate(
            page_url=f"{base}/{username}/{post_id}-{media_id}",
            post_id=str(post_id),
            media_id=str(media_id),
            title=post.get("text") or None,
            description=post.get("text") or None,
            source_url=_playable(media),
            sd_url=media.get("sd_url"),
            thumbnail_url=_thumbnail(media),
            poster_url=_poster(media),
            duration=to_int(media.get("duration_in_second"), default=None),
            width=to_int(media.get("width"), default=None),
            height=to_int(media.get("height"), default=None),
            like_count=to_int(item.get("like_count")),
            view_count=to_int(item.get("view_count")),
            comment_count=to_int(item.get("comment_count")),
            has_audio=bool(media.get("has_audio", False)),
            posted_at=parse_timestamp(post.get("created_at")),
        )


class PostFeedAdapter(_PostFeedMixin, Adapter):
    """A creator's public post feed; one page per call, ``before_time`` cursor."""

    kind = "media"
    name = "post_feed"
    strategy = FetchStrategy.JSON_API

    def extract(self, result: FetchResult) -> Extraction:
        out = Extraction()
        items = result.payload if isinstance(result.payload, list) else []
        if not isinstance(result.payload, list):
            out.note("not_a_list")
        out.raw_count = len(items)
        match = _USER_IN_FEED_URL.search(result.url)
        feed_user = match.group(1) if match else None

        for item in items:
            post = (item or {}).get("post") or {}
            media = first_of(post, lambda p: p["media"][0])
            if not media or media.get("type") != "video":
                out.note("not_video")
                continue
            if post.get("access") != "free":
                out.note("locked")
                continue
            username = first_of(post, lambda p: p["user"]["username"]) or feed_user
            try:
                candidate = self._media_candidate(item, post, media, username)
            except ExtractionIncomplete:
                out.dropped += 1
                continue
            if candidate.source_url is None:
                out.note("no_source")
            out.records.append(candidate)

        if items:
            out.cursor = first_of(items[-1], lambda i: i["post"]["created_at"])
        return out


class TagFeedAdapter(_PostFeedMixin, Adapter):
    """Tag listing: discovers creators and their free videos together."""

    kind = "tags"
    name = "tag_feed"
    strategy = FetchStrategy.JSON_API

    def extract(self, result: FetchResult) -> Extraction:
        out = Extraction()
        items = first_of(result.payload, lambda p: p["list"]) or []
        out.raw_count = len(items)
        for item in items:
            post = (item or {}).get("post") or {}
            if post.get("access") != "free":
                out.note("locked")
                continue
            try:
                creator = _creator_from_user(post.get("user") or {}, self.source.base_url)
            except ExtractionIncomplete:
                out.dropped += 1
                continue
            for media in post.get("media") or []:
                if media.get("type") != "video":
                    out.note("not_video")
                    continue
                try:
                    candidate = self._media_candidate(item, post, media, creator.username)
                except ExtractionIncomplete:
                    out.dropped += 1
                    continue
                candidate.creator = creator
                out.records.append(candidate)
        return out


class PostFeedDetailsAdapter(Adapter):
    """Same feed as ``post_feed`` mapped to assets by ``post-media`` id, for enrichment."""

    kind = "details"
    name = "post_feed_details"
    strategy = FetchStrategy.JSON_API

    def extract(self, result: FetchResult) -> Extraction:
        out = Extraction()
        items = result.payload if isinstance(result.payload, list) else []
        out.raw_count = len(items)
        for item in items:
            post = (item or {}).get("post") or {}
            post_id = post.get("id")
            videos = [m for m in post.get("media") or [] if m.get("type") == "video"]
            if post_id is None or not videos:
                out.note("not_video")
                continue
            for media in videos:
                if media.get("id") is None:
                    out.dropped += 1
                    continue
                assets = MediaAssets(
                    key=f"{post_id}-{media['id']}",
                    source_url=first_of(
                        media,
                        lambda m: m["fhd_url"],
                        lambda m: m["sd_url"],
                        lambda m: m["url"],
                        lambda m: m["uhd_url"],
                        lambda m: blur_derived_assets(m["blur_url"])[0],
                    ),
                    poster_url=_poster(media),
                    thumbnail_url=_poster(media),
                    sd_url=media.get("sd_url"),
                )
                if assets.is_empty():
                    out.dropped += 1
                    continue
                out.records.append(assets)
        if items:
            out.cursor = first_of(items[-1], lambda i: i["post"]["created_at"])
        return out
