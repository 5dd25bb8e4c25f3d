"""Adapters over rendered HTML (WordPress-style actor and post grids, video pages).

Each adapter lists the layouts it knows in order, newest first; older
layouts only run when the newer ones match nothing.
"""

from __future__ import annotations

import re
from abc import abstractmethod
from typing import Any, Optional

from bs4 import BeautifulSoup

from ..types import CreatorCandidate, Extraction, FetchResult, MediaAssets, MediaCandidate
from .base import (
    Adapter,
    first_layout,
    first_of,
    img_src,
    normalize_url,
    parse_duration,
    same_url,
    slug_from_url,
    slugify,
    text_of,
)

_POSTER_IN_SCRIPT = re.compile(r"""poster['":\s]+['"]([^'"]+)['"]""")
_M3U8_IN_SCRIPT = re.compile(r"""['"]([^'"]*\.m3u8[^'"]*)['"]""")


def _soup(result: FetchResult) -> BeautifulSoup:
    return BeautifulSoup(result.html or "", "html.parser")


def _img_in(anchor: Any) -> Any:
    return anchor.find("img") if anchor is not None else None


class _CreatorGridAdapter(Adapter):
    kind = "creators"

    @abstractmethod
    def _layouts(self) -> list: ...

    def extract(self, result: FetchResult) -> Extraction:
        out = Extraction()
        layout, items = first_layout(_soup(result), self._layouts())
        out.raw_count = len(items)
        if layout > 0:
            out.note(f"layout_fallback_{layout}")

        listing_url = self.source.creators_url(1)
        seen: set[str] = set()
        for name, anchor, img in items:
            href = anchor.get("href") if anchor is not None else None
            profile_url = normalize_url(href, self.source.base_url)
            if not name or not profile_url or same_url(profile_url, listing_url):
                out.dropped += 1
                continue
            if profile_url in seen:
                out.note("duplicate_on_page")
                continue
            seen.add(profile_url)
            cover = img_src(img)
            out.records.append(
                CreatorCandidate(
                    external_key=profile_url,
                    name=name,
                    profile_url=profile_url,
                    slug=slug_from_url(profile_url) or slugify(name),
                    cover_url=normalize_url(cover, self.source.base_url),
                )
            )
        return out


class WpActorGridAdapter(_CreatorGridAdapter):
    name = "wp_actor_grid"
    ready_selectors = ("span.actor-title", "header.entry-header")

    def _layouts(self) -> list:
        return [
            lambda s: [
                (text_of(t), t.find_parent("a"), _img_in(t.find_parent("a")))
                for t in s.select("span.actor-title")
            ],
            lambda s: [
                (text_of(a.select_one("header.entry-header")), a, a.find("img"))
                for a in s.select('a[href*="/actors/"]')
                if a.select_one("header.entry-header")
            ],
            lambda s: [
                (a.find("img").get("alt", "").strip(), a, a.find("img"))
                for a in s.select('article a[href*="/actors/"]')
                if a.find("img") is not None
            ],
        ]


class ModelsGridAdapter(_CreatorGridAdapter):
    name = "models_grid"
    ready_selectors = (".pt-cv-ifield", ".pt-cv-content-item")

    @staticmethod
    def _cards(soup: Any, selector: str) -> list:
        cards = []
        for card in soup.select(selector):
            link = card.select_one('a[href*="/models/"]')
            name = first_of(
                card,
                lambda c: text_of(c.select_one(".pt-cv-title a")),
                lambda c: text_of(c.select_one("h5.pt-cv-title a")),
                lambda c: c.select_one('a[href*="/models/"]')["title"].strip(),
            )
            if link is not None:
                cards.append((name, link, link.find("img") or card.find("img")))
        return cards

    def _layouts(self) -> list:
        return [
            lambda s: self._cards(s, ".pt-cv-ifield"),
            lambda s: self._cards(s, ".pt-cv-content-item"),
        ]


class WpPostListAdapter(Adapter):
    kind = "media"
    name = "wp_post_list"
    ready_selectors = ("article.thumb-block", "article.post", ".col-sm-4")

    @staticmethod
    def _thumb_blocks(soup: Any) -> list[dict]:
        out = []
        for article in soup.select("article.thumb-block"):
            link = article.select_one("a[href]")
            out.append(
                {
                    "href": link.get("href") if link else None,
                    "title": text_of(article.select_one("header span")),
                    "img": article.find("img"),
                    "duration": text_of(article.select_one(".duration")),
                }
            )
        return out

    @staticmethod
    def _posts(soup: Any) -> list[dict]:
        out = []
        for article in soup.select("article.post"):
            title = article.select_one("h2 a, .post-title a")
            link = article.select_one("a[href]")
            out.append(
                {
                    "href": (title or link).get("href") if (title or link) else None,
                    "title": text_of(title),
                    "img": article.find("img"),
                    "duration": text_of(article.select_one(".duration")),
                }
            )
        return out

    @staticmethod
    def _grid_columns(soup: Any) -> list[dict]:
        out = []
        for col in soup.select(".col-sm-4"):
            title = col.select_one("h3 a")
            if title is None:
                continue
            out.append(
                {
                    "href": title.get("href"),
                    "title": text_of(title),
                    "img": col.find("img"),
                    "duration": None,
                }
            )
        return out

    def extract(self, result: FetchResult) -> Extraction:
        out = Extraction()
        layout, items = first_layout(
            _soup(result), [self._thumb_blocks, self._posts, self._grid_columns]
        )
        out.raw_count = len(items)
        if layout > 0:
            out.note(f"layout_fallback_{layout}")

        seen: set[str] = set()
        for item in items:
            page_url = normalize_url(item["href"], self.source.base_url)
            if not page_url:
                out.dropped += 1
                continue
            if page_url in seen:
                out.note("duplicate_on_page")
                continue
            seen.add(page_url)
            thumb = first_of(
                item["img"],
                img_src,
                lambda img: img.get("data-bttrlzyloading-md-src"),
            )
            out.records.append(
                MediaCandidate(
                    page_url=page_url,
                    title=item["title"],
                    thumbnail_url=normalize_url(thumb, self.source.base_url),
                    duration=parse_duration(item["duration"]),
                )
            )
        return out


def _script_match(soup: Any, needle: str, pattern: re.Pattern) -> Optional[str]:
    for script in soup.find_all("script"):
        content = script.string or script.get_text() or ""
        if needle not in content:
            continue
        match = pattern.search(content)
        if match:
            return match.group(1)
    return None


class VideoPlayerAdapter(Adapter):
    kind = "details"
    name = "video_player"
    ready_selectors = ("video",)

    def _assets(self, soup: Any) -> tuple[Optional[str], Optional[str]]:
        video = first_of(
            soup,
            lambda s: s.select_one("video.js-fluid-player"),
            lambda s: s.select_one("video"),
        )
        poster = first_of(
            video,
            lambda v: v["poster"],
            lambda s: _script_match(soup, "poster", _POSTER_IN_SCRIPT),
        )
        source = first_of(
            video,
            lambda v: v.select_one("source")["src"],
            lambda v: v["src"],
            lambda s: _script_match(soup, ".m3u8", _M3U8_IN_SCRIPT),
        )
        return poster, source

    def extract(self, result: FetchResult) -> Extraction:
        out = Extraction()
        soup = _soup(result)
        out.raw_count = 1 if soup.find("video") is not None else 0
        poster, source = self._assets(soup)
        assets = MediaAssets(
            key=result.url,
            poster_url=normalize_url(poster, self.source.image_base),
            source_url=normalize_url(source, self.source.asset_base),
        )
        if assets.is_empty():
            out.dropped += 1
            return out
        out.records.append(assets)
        return out


class HlsPlayerAdapter(VideoPlayerAdapter):
    name = "hls_player"
    ready_selectors = ("video#player",)
    require_ready = True

    def _assets(self, soup: Any) -> tuple[Optional[str], Optional[str]]:
        video = soup.select_one("video#player")
        poster = first_of(video, lambda v: v["poster"])
        source = first_of(
            video,
            lambda v: v.select_one('source[type="video/m3u8"]')["src"],
            lambda v: v["data-vtt-url"].rsplit("/", 1)[0] + "/hls.m3u8",
            lambda v: v.select_one("source")["src"],
        )
        return poster, source
