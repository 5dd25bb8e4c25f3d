import pytest
from conftest import html_result

from ingest.adapters import ADAPTERS, extract, get_adapter
from ingest.adapters.base import first_of, normalize_url, parse_duration
from ingest.sources import get_source
from ingest.types import Stage

NSFW = get_source("nsfw247")
CLUB = get_source("clubeadulto")
MODELS = get_source("nsfw247_models")


def test_normalize_url():
    base = "https://cdn.test"
    assert normalize_url("https://x.test/a.mp4", base) == "https://x.test/a.mp4"
    assert normalize_url("//x.test/a.mp4", base) == "https://x.test/a.mp4"
    assert normalize_url("/media/a.mp4", base) == "https://cdn.test/media/a.mp4"
    assert normalize_url("media/a.mp4", base + "/") == "https://cdn.test/media/a.mp4"
    assert normalize_url("data:image/gif;base64,R0l", base) is None
    assert normalize_url("", base) is None


def test_first_of_falls_through_failures_and_empties():
    node = {"b": "", "c": "value"}
    assert first_of(node, lambda n: n["a"], lambda n: n["b"], lambda n: n["c"]) == "value"
    assert first_of(node, lambda n: n["missing"]) is None


def test_parse_duration():
    assert parse_duration("12:34") == 754
    assert parse_duration("1:02:03") == 3723
    assert parse_duration("95") == 95
    assert parse_duration(None) is None


def test_registry_covers_every_source_stage():
    from ingest.sources import SOURCES

    for source in SOURCES.values():
        for stage in source.adapters:
            assert get_adapter(source, stage).name in ADAPTERS


def test_creator_grid_base_requires_layouts():
    from ingest.adapters.html import _CreatorGridAdapter

    with pytest.raises(TypeError):
        _CreatorGridAdapter(NSFW)


ACTORS_PRIMARY = """
<div class="actors">
  <a href="/actors/ana-lee/"><img data-src="/img/ana.jpg" src="data:image/gif;base64,x"><span class="actor-title">Ana Lee</span></a>
  <a href="https://nsfw247.to/actors/bo/"><img src="https://img.test/bo.jpg"><span class="actor-title">Bo</span></a>
  <a href="/actors/"><span class="actor-title">All actors</span></a>
  <a href="/actors/ana-lee/"><span class="actor-title">Ana Lee</span></a>
  <a href="/actors/nameless/"><span class="actor-title"> </span></a>
</div>
"""


def test_wp_actor_grid_primary_layout():
    url = NSFW.creators_url(1)
    out = extract(html_result(url, ACTORS_PRIMARY), Stage.DISCOVERY, NSFW)

    assert [c.name for c in out.records] == ["Ana Lee", "Bo"]
    ana = out.records[0]
    assert ana.profile_url == "https://nsfw247.to/actors/ana-lee/"
    assert ana.external_key == ana.profile_url
    assert ana.slug == "ana-lee"
    assert ana.cover_url == "https://nsfw247.to/img/ana.jpg"
    # listing link and nameless card dropped, repeated card noted
    assert out.dropped == 2
    assert out.diagnostics["duplicate_on_page"] == 1


ACTORS_HEADER_LAYOUT = """
<article><a href="/actors/cy/"><img srcset="/img/cy.jpg 1x"><header class="entry-header">Cy</header></a></article>
"""


def test_wp_actor_grid_falls_back_to_entry_header():
    out = extract(html_result(NSFW.creators_url(2), ACTORS_HEADER_LAYOUT), Stage.DISCOVERY, NSFW)

    assert [(c.name, c.cover_url) for c in out.records] == [("Cy", "https://nsfw247.to/img/cy.jpg")]
    assert out.diagnostics["layout_fallback_1"] == 1


def test_wp_actor_grid_empty_page():
    out = extract(html_result(NSFW.creators_url(9), "<p>Nothing found</p>"), Stage.DISCOVERY, NSFW)
    assert out.records == [] and out.raw_count == 0


MODELS_GRID = """
<div class="pt-cv-ifield">
  <a href="/models/dee" title="Dee"><img src="/m/dee.jpg"></a>
  <h4 class="pt-cv-title"><a href="/models/dee">Dee Model</a></h4>
</div>
<div class="pt-cv-ifield"><a href="/models/eve" title="Eve"><img src="/m/eve.jpg"></a></div>
"""


def test_models_grid_names_with_title_fallback():
    out = extract(html_result(MODELS.creators_url(1), MODELS_GRID), Stage.DISCOVERY, MODELS)

    assert [c.name for c in out.records] == ["Dee Model", "Eve"]
    assert out.records[1].profile_url == "https://nsfw247.to/models/eve"


POSTS_THUMB_BLOCKS = """
<article class="thumb-block">
  <a href="/video/first-clip/"><img data-src="/t/1.jpg"></a>
  <header><span>First clip</span></header><span class="duration">10:05</span>
</article>
<article class="thumb-block">
  <a href="https://nsfw247.to/video/second/"><img src="https://t.test/2.jpg"></a>
  <header><span>Second</span></header>
</article>
<article class="thumb-block"><header><span>No link</span></header></article>
"""

POSTS_GRID_COLUMNS = """
<div class="col-sm-4"><img data-bttrlzyloading-md-src="/t/3.jpg"><h3><a href="/video/third/">Third</a></h3></div>
"""


def test_wp_post_list_thumb_blocks():
    out = extract(html_result("https://nsfw247.to/actors/ana/", POSTS_THUMB_BLOCKS), Stage.MEDIA_LISTING, NSFW)

    assert [m.page_url for m in out.records] == [
        "https://nsfw247.to/video/first-clip/",
        "https://nsfw247.to/video/second/",
    ]
    first = out.records[0]
    assert (first.title, first.duration, first.thumbnail_url) == (
        "First clip", 605, "https://nsfw247.to/t/1.jpg"
    )
    assert first.source_url is None
    assert out.dropped == 1


def test_wp_post_list_oldest_layout():
    out = extract(html_result("https://nsfw247.to/actors/ana/", POSTS_GRID_COLUMNS), Stage.MEDIA_LISTING, NSFW)

    assert len(out.records) == 1
    assert out.records[0].thumbnail_url == "https://nsfw247.to/t/3.jpg"
    assert out.diagnostics == {"layout_fallback_2": 1}


PLAYER_PAGE = """
<video class="js-fluid-player" poster="/posters/a.jpg"><source src="/hls/a/index.m3u8"></video>
"""

PLAYER_SCRIPT_ONLY = """
<div id="player"></div>
<script>var cfg = {poster: "https://img.test/b.jpg", file: "https://cdn.test/b/master.m3u8"};</script>
"""


def test_video_player_resolves_against_asset_hosts():
    out = extract(html_result("https://nsfw247.to/video/a/", PLAYER_PAGE), Stage.DETAILS, MODELS)

    (assets,) = out.records
    assert assets.key == "https://nsfw247.to/video/a/"
    assert assets.poster_url == "https://nsfwpics.co/posters/a.jpg"
    assert assets.source_url == "https://nsfwclips.co/hls/a/index.m3u8"


def test_video_player_script_fallback():
    out = extract(html_result("https://nsfw247.to/video/b/", PLAYER_SCRIPT_ONLY), Stage.DETAILS, NSFW)

    (assets,) = out.records
    assert assets.poster_url == "https://img.test/b.jpg"
    assert assets.source_url == "https://cdn.test/b/master.m3u8"


def test_video_player_nothing_found_is_dropped():
    out = extract(html_result("https://nsfw247.to/video/c/", "<div>gone</div>"), Stage.DETAILS, NSFW)
    assert out.records == [] and out.dropped == 1


def test_hls_player_uses_vtt_url():
    html = '<video id="player" poster="https://img.test/p.jpg" data-vtt-url="/vid/abc/thumbs.vtt"></video>'
    out = extract(html_result("https://clubeadulto.net/v/abc/", html), Stage.DETAILS, CLUB)

    (assets,) = out.records
    assert assets.source_url == "https://cdn2.foxvideo.club/vid/abc/hls.m3u8"
    assert get_adapter(CLUB, Stage.DETAILS).require_ready is True
