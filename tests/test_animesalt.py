from urllib.parse import urlencode

import pytest
from bs4 import BeautifulSoup

import config
from fetcher import FetchError
from sources import animesalt
from sources.animesalt import (
    Source,
    find_video_in_html,
    group_seasons,
    id_from_url,
    image_url,
    normalize_url,
    parse_episode_ref,
    sanitize_text,
)

BASE = config.BASE


def soup_of(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def series_page(episodes: list[tuple[int, int]], pages: int = 1) -> str:
    """Series page with episode cards for (season, number) pairs."""
    cards = "".join(
        f'<article class="post"><div class="post-thumbnail"><img src="/ep{s}x{n}.jpg"></div>'
        f'<a href="{BASE}/episode/naruto-{s}x{n}/"><span class="entry-title">Episode {n}</span></a></article>'
        for s, n in episodes
    )
    nav = "".join(f'<a class="page-numbers" href="/series/naruto/?page={p}">{p}</a>' for p in range(2, pages + 1))
    return (
        '<html><head><meta property="og:title" content="Naruto - AnimeSalt"></head><body>'
        '<h1 class="entry-title">  Naruto  </h1>'
        '<div class="post-thumbnail"><img data-src="//cdn.example/naruto.jpg"></div>'
        '<div class="description">A   ninja story.</div><span class="year">2002</span>'
        '<a href="/category/genre/action/">Action</a><a href="/category/genre/action/">Action</a>'
        '<a href="/category/language/hindi/">Hindi</a>'
        f"{cards}<nav class=\"pagination\">{nav}</nav></body></html>"
    )


# ── Helpers ────────────────────────────────────────────────


def test_normalize_url():
    assert normalize_url("//cdn.example/a.jpg") == "https://cdn.example/a.jpg"
    assert normalize_url("/series/naruto/") == f"{BASE}/series/naruto/"
    assert normalize_url("https://x.example/y") == "https://x.example/y"
    assert normalize_url("") is None


def test_sanitize_text():
    assert sanitize_text("  Naruto \n\t Shippuden ") == "Naruto Shippuden"
    assert sanitize_text(None) == ""


def test_image_url_prefers_lazy_source():
    img = soup_of('<img src="data:image/svg+xml;base64,xx" data-src="/real.jpg">').img
    assert image_url(img) == f"{BASE}/real.jpg"
    assert image_url(soup_of('<img src="data:image/svg+xml,x">').img) is None
    assert image_url(None) is None


def test_id_from_url():
    assert id_from_url(f"{BASE}/series/naruto-shippuden/") == ("series", "naruto-shippuden")
    assert id_from_url("/movies/your-name/") == ("movie", "your-name")
    assert id_from_url(f"{BASE}/") == ("series", None)


def test_parse_episode_ref():
    assert parse_episode_ref(f"{BASE}/episode/naruto-shippuden-2x15/") == {
        "id": "naruto-shippuden-2x15",
        "anime_id": "naruto-shippuden",
        "season": 2,
        "number": 15,
    }
    assert parse_episode_ref("/episode/bleach/?ep=7")["id"] == "bleach-1x7"
    assert parse_episode_ref("/series/naruto/") is None


def test_find_video_in_html():
    html = '<script>player.setup({file: "https://cdn.example/stream/master.m3u8?t=1"})</script>'
    assert find_video_in_html(html) == "https://cdn.example/stream/master.m3u8?t=1"
    assert find_video_in_html("<p>nothing here</p>") is None


# ── Page count detection ───────────────────────────────────


def test_detect_total_pages_from_numbered_links(make_listing_page):
    soup = soup_of(make_listing_page([("a", "A")], pages=7))
    assert Source.detect_total_pages(soup) == 7


def test_detect_total_pages_from_last_link_href():
    soup = soup_of(
        '<div class="pagination"><a class="last" href="/category/anime/?page=42">Last »</a></div>'
    )
    assert Source.detect_total_pages(soup) == 42


def test_detect_total_pages_from_label():
    assert Source.detect_total_pages(soup_of("<p>Page 1 of 12</p>")) == 12


def test_detect_total_pages_defaults_to_one():
    assert Source.detect_total_pages(soup_of("<p>no pagination</p>")) == 1
    assert Source.detect_total_pages(None) == 1


# ── Listing parsing ────────────────────────────────────────


def test_parse_items_from_cards(make_listing_page):
    html = make_listing_page([("naruto", "Naruto"), ("bleach", "Bleach"), ("naruto", "Naruto")])
    items = Source().parse_items(soup_of(html))

    assert [item["id"] for item in items] == ["naruto", "bleach"]
    assert items[0]["title"] == "Naruto"
    assert items[0]["poster"] == "https://cdn.example/naruto.jpg"
    assert items[0]["link"] == f"{BASE}/series/naruto/"
    assert items[0]["year"] == "2021"


def test_parse_items_falls_back_to_links():
    html = (
        '<div><article><a href="/movies/your-name/"><h3>Your Name</h3></a></article>'
        '<a href="/series/one-piece/">One Piece</a>'
        '<a href="/episode/one-piece-1x1/">Episode 1</a></div>'
    )
    items = Source().parse_items(soup_of(html))
    assert [(i["id"], i["type"], i["title"]) for i in items] == [
        ("your-name", "movie", "Your Name"),
        ("one-piece", "series", "One Piece"),
    ]


def test_parse_episodes():
    episodes = Source().parse_episodes(soup_of(series_page([(1, 2), (1, 1), (1, 2)])))

    assert [ep["id"] for ep in episodes] == ["naruto-1x2", "naruto-1x1"]
    assert episodes[1]["title"] == "Episode 1"
    assert episodes[1]["poster"] == f"{BASE}/ep1x1.jpg"


def test_parse_info():
    info = Source().parse_info(soup_of(series_page([(1, 1), (2, 1)])), "naruto")

    assert info["title"] == "Naruto"
    assert info["poster"] == "https://cdn.example/naruto.jpg"
    assert info["description"] == "A ninja story."
    assert info["year"] == 2002
    assert info["genres"] == [{"name": "Action", "slug": "action"}]
    assert info["languages"] == [{"name": "Hindi", "slug": "hindi"}]
    assert info["seasons"] == [1, 2]
    assert info["episodes_count"] == 2


def test_parse_video_prefers_iframes():
    html = (
        '<iframe data-src="//zephyrflick.top/embed/abc"></iframe>'
        '<iframe src="https://other.example/e/1"></iframe>'
        '<track src="/subs/en.vtt" label="English">'
    )
    video = Source().parse_video(soup_of(html), html, f"{BASE}/episode/naruto-1x1/")

    assert video["type"] == "iframe"
    assert video["url"] == "https://zephyrflick.top/embed/abc"
    assert [s["name"] for s in video["sources"]] == ["ZephyrFlick", "Server 2"]
    assert video["subtitles"] == [{"lang": "English", "url": f"{BASE}/subs/en.vtt"}]


def test_parse_video_multi_language_player():
    html = (
        '<iframe data-src="https://play.example/multi-lang-plyr/?data='
        '%5B%7B%22language%22%3A%22Hindi%22%2C%22link%22%3A%22https%3A%2F%2Fp.example%2Fhi%22%7D%5D">'
        "</iframe>"
    )
    video = Source().parse_video(soup_of(html), html, BASE)
    assert video["sources"] == [{"name": "Hindi", "url": "https://p.example/hi"}]


def test_parse_video_falls_back_to_scripts():
    html = '<script>var src = "https://cdn.example/v/ep1.mp4";</script>'
    video = Source().parse_video(soup_of(html), html, BASE)
    assert video["type"] == "mp4"
    assert video["url"] == "https://cdn.example/v/ep1.mp4"


def test_parse_video_raises_when_nothing_found():
    with pytest.raises(Exception, match="Could not find video URL"):
        Source().parse_video(soup_of("<p>empty</p>"), "<p>empty</p>", BASE)


# ── Multi-page scraping (fetch stubbed) ────────────────────


@pytest.fixture
def fake_site(monkeypatch):
    """Serve canned pages by URL instead of hitting the network."""
    pages: dict[str, str] = {}
    requested: list[str] = []

    async def fake_fetch_html(url, **kwargs):
        if kwargs.get("params"):
            url = f"{url}?{urlencode(kwargs['params'])}"
        requested.append(url)
        if url not in pages:
            raise FetchError(url, "HTTP 404", 404)
        html = pages[url]
        if isinstance(html, Exception):
            raise html
        return html

    monkeypatch.setattr(animesalt, "fetch_html", fake_fetch_html)
    return pages, requested


@pytest.mark.asyncio
async def test_get_category_merges_every_page(fake_site, make_listing_page):
    pages, requested = fake_site
    root = f"{BASE}/category/genre/action/"
    pages[root] = make_listing_page([("naruto", "Naruto"), ("bleach", "Bleach")], pages=3)
    pages[f"{root}?page=2"] = make_listing_page([("bleach", "Bleach"), ("akira", "Akira")], pages=3, current=2)
    pages[f"{root}?page=3"] = make_listing_page([("zetman", "Zetman")], pages=3, current=3)

    result = await Source().get_category("genre", "Action")

    assert [item["id"] for item in result["items"]] == ["akira", "bleach", "naruto", "zetman"]
    assert result["total_pages"] == 3
    assert result["partial"] is False
    assert requested[0] == root


@pytest.mark.asyncio
async def test_get_category_reports_failed_pages(fake_site, make_listing_page):
    pages, _ = fake_site
    root = f"{BASE}/letter/N/"
    pages[root] = make_listing_page([("naruto", "Naruto")], pages=3)
    pages[f"{root}?page=3"] = make_listing_page([("nana", "Nana")], pages=3, current=3)

    result = await Source().get_category("letter", "n")

    assert [item["id"] for item in result["items"]] == ["nana", "naruto"]
    assert result["failed_pages"] == [2]
    assert result["partial"] is True


@pytest.mark.asyncio
async def test_get_category_unknown_type():
    assert await Source().get_category("nonsense", "x") is None


@pytest.mark.asyncio
async def test_get_episodes_sorted_across_pages(fake_site):
    pages, _ = fake_site
    root = f"{BASE}/series/naruto/"
    pages[root] = series_page([(1, 3), (1, 2)], pages=2)
    pages[f"{root}?page=2"] = series_page([(1, 1), (1, 2)], pages=2)

    result = await Source().get_episodes("naruto")

    assert [ep["id"] for ep in result["items"]] == ["naruto-1x1", "naruto-1x2", "naruto-1x3"]
    assert result["total_episodes"] == 3


@pytest.mark.asyncio
async def test_get_episodes_first_page_failure_raises(fake_site):
    with pytest.raises(FetchError):
        await Source().get_episodes("missing")


@pytest.mark.asyncio
async def test_get_anime_info_falls_back_to_movie(fake_site):
    pages, requested = fake_site
    pages[f"{BASE}/movies/your-name/"] = '<h1 class="entry-title">Your Name</h1>'

    info = await Source().get_anime_info("your-name")

    assert info["type"] == "movie"
    assert info["title"] == "Your Name"
    assert requested == [f"{BASE}/series/your-name/", f"{BASE}/movies/your-name/"]


@pytest.mark.asyncio
async def test_get_letters_keeps_letters_with_items(fake_site, make_listing_page):
    pages, requested = fake_site
    pages[f"{BASE}/letter/A/"] = make_listing_page([("akira", "Akira")])
    pages[f"{BASE}/letter/B/"] = "<html><body><p>Nothing found</p></body></html>"
    pages[f"{BASE}/letter/N/"] = make_listing_page([("naruto", "Naruto")])

    letters = await Source(concurrency=4).get_letters()

    assert letters == ["A", "N"]
    assert len(requested) == 26


@pytest.mark.asyncio
async def test_search_uses_query_param(fake_site, make_listing_page):
    pages, _ = fake_site
    pages[f"{BASE}/?s=naruto"] = make_listing_page([("naruto", "Naruto")])

    results = await Source().search(" naruto ")

    assert [r["id"] for r in results] == ["naruto"]
    assert await Source().search("   ") == []


@pytest.mark.asyncio
async def test_search_requests_later_pages(fake_site, make_listing_page):
    pages, requested = fake_site
    pages[f"{BASE}/?s=naruto&page=2"] = make_listing_page([("boruto", "Boruto")])

    results = await Source().search("naruto", page=2)

    assert [r["id"] for r in results] == ["boruto"]
    assert requested == [f"{BASE}/?s=naruto&page=2"]


@pytest.mark.asyncio
async def test_search_failure_propagates(fake_site):
    with pytest.raises(FetchError):
        await Source().search("naruto")


@pytest.mark.asyncio
async def test_get_episodes_groups_seasons(fake_site):
    pages, _ = fake_site
    pages[f"{BASE}/series/naruto/"] = series_page([(2, 1), (1, 2), (1, 1)])

    result = await Source().get_episodes("naruto")

    assert result["total_seasons"] == 2
    assert result["seasons"] == [
        {"season": 1, "episode_count": 2, "start_episode": 1, "end_episode": 2},
        {"season": 2, "episode_count": 1, "start_episode": 1, "end_episode": 1},
    ]


@pytest.mark.asyncio
async def test_get_letters_raises_when_site_is_down(fake_site):
    with pytest.raises(FetchError):
        await Source(concurrency=8).get_letters()


@pytest.mark.asyncio
async def test_get_home_sections(fake_site):
    pages, _ = fake_site
    chart = "".join(
        f'<div class="chart-item"><a class="chart-poster" href="/series/show-{i}/"><img src="/p{i}.jpg"></a>'
        f'<span class="chart-title">Show {i}</span></div>'
        for i in range(12)
    )
    pages[f"{BASE}/"] = (
        f'<html><body><div id="torofilm_wdgt_popular-3-all">{chart}</div>'
        '<div class="episodes"><article class="post"><a href="/episode/naruto-2x5/">'
        '<h3 class="entry-title">Naruto 2x5</h3></a></article></div></body></html>'
    )

    home = await Source().get_home()

    assert len(home["trending"]) == 10
    assert [item["id"] for item in home["top_series"]][10:] == ["show-10", "show-11"]
    assert home["recent_episodes"][0]["id"] == "naruto-2x5"
    assert home["recent_episodes"][0]["season"] == 2
    assert home["recent_episodes"][0]["title"] == "Naruto 2x5"


# ── Servers ────────────────────────────────────────────────


def test_parse_servers_from_switcher_buttons():
    html = (
        '<div class="servers"><button class="server-btn" data-server="zf" data-type="dub">ZephyrFlick</button>'
        '<li class="server-item" data-id="st" title="StreamTape"></li></div>'
    )
    servers = Source().parse_servers(soup_of(html))

    assert servers == [
        {"id": "zf", "name": "ZephyrFlick", "type": "dub", "url": None},
        {"id": "st", "name": "StreamTape", "type": "sub", "url": None},
    ]


@pytest.mark.asyncio
async def test_get_servers_falls_back_to_players(fake_site):
    pages, _ = fake_site
    pages[f"{BASE}/episode/naruto-1x1/"] = (
        '<iframe data-src="//zephyrflick.top/embed/abc"></iframe><iframe src="about:blank"></iframe>'
    )

    servers = await Source().get_servers("naruto-1x1")

    assert servers == [
        {"id": "1", "name": "ZephyrFlick", "type": "sub", "url": "https://zephyrflick.top/embed/abc"},
    ]


def test_group_seasons():
    episodes = [
        {"season": 3, "number": 40},
        {"season": 1, "number": 1},
        {"season": 3, "number": 38},
    ]
    assert group_seasons(episodes) == [
        {"season": 1, "episode_count": 1, "start_episode": 1, "end_episode": 1},
        {"season": 3, "episode_count": 2, "start_episode": 38, "end_episode": 40},
    ]
    assert group_seasons([]) == []
