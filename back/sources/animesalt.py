"""
AnimeSalt source plugin.

Site: animesalt.cc
Stack: WordPress + Toroflix theme

Search: GET /?s={query}&page={N}
Series page: /series/{slug}/  → info + episode list (may be paginated)
Movie page: /movies/{slug}/
Episode page: /episode/{slug}-{season}x{episode}/ → iframe player(s)
Listings: /category/..., /letter/{L}/  → paginated with ?page=N

Listings spread over several pages go through aggregator.fetch_all so pages
are fetched a few at a time and merged without duplicates.
"""

import json
import re
from urllib.parse import unquote, urljoin

from bs4 import BeautifulSoup

import config
from aggregator import PageFetchResult, fetch_all, gather_bounded
from fetcher import FetchError, fetch_html
from sources.base import AnimeSource

BASE = config.BASE

CATEGORY_PATHS = {
    "category": "/category/{value}/",
    "letter": "/letter/{value}/",
    "post-type": "/category/post-type/{value}/",
    "genre": "/category/genre/{value}/",
    "language": "/category/language/{value}/",
    "network": "/category/network/{value}/",
    "studio": "/category/studio/{value}/",
}

LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# Listing layouts seen across archive, search and home pages, tried in order
ITEM_SELECTORS = [
    ".posts .post",
    ".movies .tt",
    ".film-list .film-item",
    ".post-article",
    ".archive-item",
    ".search-results .post",
    ".result-item",
]

EPISODE_SELECTORS = [
    'article.post a[href*="/episode/"]',
    '.episodes a[href*="/episode/"]',
    '.episode-list a[href*="/episode/"]',
    'a[href*="/episode/"]',
]

HOME_SECTIONS = {
    "spotlights": ".swiper-wrapper .swiper-slide, .slider .slide",
    "trending": "#torofilm_wdgt_popular-3-all .chart-item",
    "top_movies": "#torofilm_wdgt_popular-5-all .chart-item",
}

RECENT_EPISODES_SELECTOR = ".post.episodes, .episodes .post"

# Server switchers on episode pages
SERVER_SELECTOR = ".server-btn, .server-item, [data-server]"

# Known embed hosts, matched against iframe URLs
_HOST_NAMES = {
    "zephyrflick": "ZephyrFlick",
    "streamtape": "StreamTape",
    "mp4upload": "Mp4Upload",
    "gogo": "GogoStream",
    "cloud9": "Cloud9",
}


class Source(AnimeSource):
    name = "animesalt"
    language = "en"
    base_url = BASE

    def __init__(
        self,
        concurrency: int = config.PAGE_CONCURRENCY,
        max_pages: int = config.MAX_PAGES,
        page_timeout: float | None = config.PAGE_TIMEOUT,
    ):
        self.concurrency = concurrency
        self.max_pages = max_pages
        self.page_timeout = page_timeout

    async def _get_soup(self, url: str) -> BeautifulSoup:
        html = await fetch_html(url)
        return BeautifulSoup(html, "lxml")

    async def _fetch_listing(self, path: str, parse, identity_key, sort_key, label: str) -> dict:
        """Fetch every page of `path` (?page=N) and merge the parsed items."""

        async def fetch_page(page: int) -> PageFetchResult:
            soup = await self._get_soup(self._page_url(path, page))
            return PageFetchResult(items=parse(soup), page_number=page, document=soup)

        result = await fetch_all(
            fetch_page,
            lambda first: self.detect_total_pages(first.document),
            identity_key,
            sort_key,
            concurrency_limit=self.concurrency,
            max_pages=self.max_pages,
            page_timeout=self.page_timeout,
            label=label,
        )
        return result.to_dict()

    # ── Search ────────────────────────────────────────────────

    async def search(self, query: str, page: int = 1) -> list[dict]:
        """WordPress native search, one results page at a time."""
        query = query.strip()
        if not query:
            return []
        params = {"s": query}
        if page > 1:
            params["page"] = page
        html = await fetch_html(f"{BASE}/", params=params)
        return self.parse_items(BeautifulSoup(html, "lxml"))

    # ── Episodes ──────────────────────────────────────────────

    async def get_episodes(self, anime_id: str) -> dict:
        """
        All episodes of a series, oldest first.
        Long series split the list over ?page=N pages.
        """
        result = await self._fetch_listing(
            self._series_path(anime_id),
            self.parse_episodes,
            identity_key=lambda ep: ep["id"],
            sort_key=lambda ep: (ep["season"], ep["number"]),
            label=f"animesalt:episodes:{anime_id}",
        )
        result["total_episodes"] = len(result["items"])
        result["seasons"] = group_seasons(result["items"])
        result["total_seasons"] = len(result["seasons"])
        return result

    # ── Anime Info ─────────────────────────────────────────────

    async def get_anime_info(self, anime_id: str) -> dict | None:
        """Scrape the series (or movie) page for title, poster, genres, etc."""
        try:
            soup = await self._get_soup(BASE + self._series_path(anime_id))
            show_type = "movie" if anime_id.startswith("movies/") else "series"
        except FetchError as e:
            if e.status_code != 404 or "/" in anime_id:
                raise
            # Bare slugs may be movies
            soup = await self._get_soup(f"{BASE}/movies/{anime_id}/")
            show_type = "movie"

        if soup.select_one(".error-404, .not-found"):
            return None
        return self.parse_info(soup, anime_id, show_type)

    def parse_info(self, soup: BeautifulSoup, anime_id: str, show_type: str = "series") -> dict:
        title = anime_id.rsplit("/", 1)[-1].replace("-", " ").title()
        og_title = soup.select_one('meta[property="og:title"]')
        title_el = soup.select_one("h1.entry-title, .entry-title, h1")
        if title_el and title_el.get_text(strip=True):
            title = sanitize_text(title_el.get_text())
        elif og_title and og_title.get("content"):
            title = sanitize_text(og_title["content"])

        description = ""
        desc_el = soup.select_one(".description, .entry-content p, .post-content p")
        if desc_el:
            description = sanitize_text(desc_el.get_text())

        year = None
        year_el = soup.select_one(".year, .date, .release-date")
        year_text = year_el.get_text() if year_el else ""
        year_match = re.search(r"\b(19|20)\d{2}\b", year_text)
        if year_match:
            year = int(year_match.group())

        episodes = self.parse_episodes(soup)
        return {
            "id": anime_id,
            "title": title,
            "poster": image_url(soup.select_one(
                'div[style*="margin-bottom"] img[data-src], .post-thumbnail img, .poster img'
            )),
            "type": show_type,
            "description": description,
            "year": year,
            "genres": self._taxonomy_links(soup, "genre"),
            "languages": self._taxonomy_links(soup, "language"),
            "networks": self._taxonomy_links(soup, "network"),
            "seasons": sorted({ep["season"] for ep in episodes}),
            "episodes_count": len(episodes),
        }

    @staticmethod
    def _taxonomy_links(soup: BeautifulSoup, taxonomy: str) -> list[dict]:
        found = []
        seen = set()
        for a in soup.select(f'a[href*="/category/{taxonomy}/"]'):
            match = re.search(rf"/category/{taxonomy}/([^/?#]+)", a["href"])
            name = sanitize_text(a.get_text())
            if not match or not name or match.group(1) in seen:
                continue
            seen.add(match.group(1))
            found.append({"name": name, "slug": match.group(1)})
        return found

    # ── Video URL ─────────────────────────────────────────────

    async def get_video_url(self, episode_id: str) -> dict:
        """
        Fetch the episode page and extract the player URLs.
        episode_id = "naruto-shippuden-1x1" (or a full "episode/..." path)
        """
        url = self._episode_url(episode_id)
        html = await fetch_html(url)
        return self.parse_video(BeautifulSoup(html, "lxml"), html, url)

    async def get_servers(self, episode_id: str) -> list[dict]:
        soup = await self._get_soup(self._episode_url(episode_id))
        return self.parse_servers(soup)

    def parse_servers(self, soup: BeautifulSoup) -> list[dict]:
        """Server switcher buttons, else one server per embedded player."""
        servers = []
        for i, el in enumerate(soup.select(SERVER_SELECTOR)):
            servers.append({
                "id": el.get("data-server") or el.get("data-id") or str(i + 1),
                "name": sanitize_text(el.get_text()) or el.get("title") or f"Server {i + 1}",
                "type": el.get("data-type") or "sub",
                "url": normalize_url(el.get("data-src") or el.get("data-url")),
            })
        if servers:
            return servers

        return [
            {"id": str(i + 1), "name": source["name"], "type": "sub", "url": source["url"]}
            for i, source in enumerate(self._iframe_sources(soup))
        ]

    def _iframe_sources(self, soup: BeautifulSoup) -> list[dict]:
        sources = []
        for i, iframe in enumerate(soup.select("iframe[src], iframe[data-src]")):
            src = iframe.get("data-src") or iframe.get("src") or ""
            if not src or src == "about:blank":
                continue
            if "multi-lang-plyr" in src:
                sources.extend(self._parse_multi_lang(src))
                continue
            sources.append({"name": self._host_name(src, i + 1), "url": normalize_url(src)})
        return sources

    def parse_video(self, soup: BeautifulSoup, html: str, page_url: str) -> dict:
        subtitles = [
            {"lang": t.get("label") or t.get("srclang") or "Unknown", "url": normalize_url(t["src"])}
            for t in soup.select("track[src]")
        ]

        # ── Strategy 1: iframe players ──
        sources = self._iframe_sources(soup)
        if sources:
            return {
                "url": sources[0]["url"],
                "type": "iframe",
                "referer": page_url,
                "headers": {"Referer": page_url},
                "subtitles": subtitles,
                "sources": sources,
            }

        # ── Strategy 2: <video> tags ──
        video_tag = soup.select_one("video source[src], video[src]")
        if video_tag:
            src = normalize_url(video_tag["src"])
            return {
                "url": src,
                "type": "hls" if ".m3u8" in src else "mp4",
                "referer": page_url,
                "headers": {"Referer": page_url},
                "subtitles": subtitles,
                "sources": [{"name": "Direct", "url": src}],
            }

        # ── Strategy 3: .m3u8/.mp4 in scripts ──
        video_url = find_video_in_html(html)
        if video_url:
            return {
                "url": video_url,
                "type": "hls" if ".m3u8" in video_url else "mp4",
                "referer": page_url,
                "headers": {"Referer": page_url},
                "subtitles": subtitles,
                "sources": [{"name": "Direct", "url": video_url}],
            }

        raise Exception("Could not find video URL on episode page")

    @staticmethod
    def _host_name(url: str, index: int) -> str:
        url_lower = url.lower()
        for host, name in _HOST_NAMES.items():
            if host in url_lower:
                return name
        return f"Server {index}"

    @staticmethod
    def _parse_multi_lang(src: str) -> list[dict]:
        """The multi-language player carries a url-encoded JSON list in ?data=."""
        if "data=" not in src:
            return []
        try:
            entries = json.loads(unquote(src.split("data=", 1)[1]))
        except ValueError as e:
            print(f"[animesalt] Failed to parse multi-lang player data: {e}")
            return []
        if not isinstance(entries, list):
            return []
        return [
            {"name": entry.get("language") or f"Language {i + 1}", "url": normalize_url(entry["link"])}
            for i, entry in enumerate(entries)
            if isinstance(entry, dict) and entry.get("link")
        ]

    # ── Home ──────────────────────────────────────────────────

    async def get_home(self) -> dict:
        soup = await self._get_soup(f"{BASE}/")
        home = {}
        for section, selector in HOME_SECTIONS.items():
            items = [self.parse_item(el) for el in soup.select(selector)]
            home[section] = [item for item in items if item["id"] and item["title"]]
        # The full popularity chart doubles as the "most watched" ranking
        home["top_series"] = home["trending"]
        home["trending"] = home["trending"][:10]
        home["recent_episodes"] = self.parse_recent_episodes(soup)
        home["latest"] = self.parse_items(soup)
        home["genres"] = self._taxonomy_links(soup, "genre")
        home["languages"] = self._taxonomy_links(soup, "language")
        home["networks"] = self._taxonomy_links(soup, "network")
        return home

    # ── Categories ────────────────────────────────────────────

    async def get_category(self, category_type: str, value: str) -> dict | None:
        """Every item of a listing, merged across all of its pages."""
        template = CATEGORY_PATHS.get(category_type)
        if template is None:
            return None
        if category_type == "letter":
            value = value.upper()
        else:
            value = value.lower()
        return await self._fetch_listing(
            template.format(value=value),
            self.parse_items,
            identity_key=lambda item: item["id"],
            sort_key=lambda item: item["title"].lower(),
            label=f"animesalt:{category_type}:{value}",
        )

    async def get_letters(self) -> list[str]:
        """Probe /letter/A..Z (first page only) and keep letters with items."""

        async def has_items(letter: str) -> bool:
            soup = await self._get_soup(BASE + CATEGORY_PATHS["letter"].format(value=letter))
            return bool(self.parse_items(soup))

        results = await gather_bounded(
            [lambda letter=letter: has_items(letter) for letter in LETTERS],
            self.concurrency,
        )
        available = []
        errors = []
        for letter, result in zip(LETTERS, results):
            if isinstance(result, Exception):
                print(f"[animesalt] Letter probe {letter} failed: {result}")
                errors.append(result)
            elif result:
                available.append(letter)
        # Every probe failed: the site itself is down
        if len(errors) == len(LETTERS):
            raise errors[-1]
        return available

    # ── Parsing ───────────────────────────────────────────────

    def parse_items(self, soup: BeautifulSoup) -> list[dict]:
        """Parse listing cards. First selector that yields items wins."""
        for selector in ITEM_SELECTORS:
            elements = soup.select(selector)
            if not elements:
                continue
            items = self._unique(self.parse_item(el) for el in elements)
            if items:
                return items

        # No known container: work back from the links themselves
        items = []
        for a in soup.select('a[href*="/series/"], a[href*="/movies/"]')[:50]:
            parent = a.find_parent("article") or a.find_parent(class_=["post", "item", "movie", "video"])
            items.append(self.parse_item(parent or a, link=a["href"]))
        return self._unique(items)

    @staticmethod
    def _unique(items) -> list[dict]:
        seen = set()
        unique = []
        for item in items:
            if not item["id"] or not item["title"] or item["id"] in seen:
                continue
            seen.add(item["id"])
            unique.append(item)
        return unique

    def parse_item(self, el, link: str | None = None) -> dict:
        if link is None:
            if el.name == "a" and el.get("href"):
                link = el["href"]
            else:
                a_tag = el.select_one('a[href*="/series/"], a[href*="/movies/"]') or el.select_one("a[href]")
                link = a_tag["href"] if a_tag else ""

        if "/episode/" in link:
            return {"id": "", "title": "", "poster": None}
        item_type, item_id = id_from_url(link)

        title = ""
        title_el = el.select_one(".entry-title, .chart-title, .title, .movie-title, h3, h4")
        if title_el:
            title = sanitize_text(title_el.get_text())
        if not title:
            img = el.select_one("img")
            title = sanitize_text(img.get("alt", "")) if img else ""
        if not title and el.name == "a":
            title = sanitize_text(el.get_text())

        text = el.get_text(" ")
        year_match = re.search(r"\b(19|20)\d{2}\b", text)
        return {
            "id": item_id or "",
            "title": title,
            "poster": image_url(el.select_one("img")),
            "type": item_type,
            "link": normalize_url(link),
            "year": year_match.group() if year_match else None,
        }

    def parse_episodes(self, soup: BeautifulSoup) -> list[dict]:
        for selector in EPISODE_SELECTORS:
            episodes = []
            seen = set()
            for a in soup.select(selector):
                ref = parse_episode_ref(a.get("href", ""))
                if ref is None or ref["id"] in seen:
                    continue
                seen.add(ref["id"])
                title_el = a.select_one(".entry-title")
                title = title_el.get_text() if title_el else (a.get("title") or a.get_text())
                article = a.find_parent("article")
                poster = image_url(article.select_one(".post-thumbnail img")) if article else None
                episodes.append({
                    **ref,
                    "title": sanitize_text(title),
                    "link": normalize_url(a["href"]),
                    "poster": poster,
                })
            if episodes:
                return episodes
        return []

    def parse_recent_episodes(self, soup: BeautifulSoup) -> list[dict]:
        episodes = []
        seen = set()
        for el in soup.select(RECENT_EPISODES_SELECTOR):
            a = el.select_one('a[href*="/episode/"]')
            ref = parse_episode_ref(a["href"]) if a else None
            if ref is None or ref["id"] in seen:
                continue
            seen.add(ref["id"])
            title_el = el.select_one(".entry-title, .title, h3")
            episodes.append({
                **ref,
                "title": sanitize_text(title_el.get_text()) if title_el else ref["anime_id"].replace("-", " ").title(),
                "poster": image_url(el.select_one("img")),
                "link": normalize_url(a["href"]),
            })
        return episodes

    @staticmethod
    def detect_total_pages(soup: BeautifulSoup | None) -> int:
        """
        Best guess at the page count: highest page number linked from the
        pagination block (or a "Page X of Y" label). 1 when there is none.
        """
        if soup is None:
            return 1
        candidates = []
        for el in soup.select(
            ".pagination a, .pagination span, .nav-links a, .nav-links span, "
            "a.page-numbers, span.page-numbers, a.last"
        ):
            match = re.search(r"(?:[?&]page=|/page/)(\d+)", el.get("href", ""))
            if match:
                candidates.append(int(match.group(1)))
            text = el.get_text(strip=True)
            if text.isdigit():
                candidates.append(int(text))
        label = re.search(r"Page\s+\d+\s+of\s+(\d+)", soup.get_text(" "), re.IGNORECASE)
        if label:
            candidates.append(int(label.group(1)))
        return max(max(candidates, default=1), 1)

    # ── Helpers ────────────────────────────────────────────────

    @staticmethod
    def _series_path(anime_id: str) -> str:
        anime_id = anime_id.strip("/")
        if "/" in anime_id:
            return f"/{anime_id}/"
        return f"/series/{anime_id}/"

    @staticmethod
    def _episode_url(episode_id: str) -> str:
        path = episode_id.strip("/")
        if not path.startswith(("episode/", "movies/")):
            path = f"episode/{path}"
        return f"{BASE}/{path}/"

    @staticmethod
    def _page_url(path: str, page: int) -> str:
        url = BASE + path
        return url if page <= 1 else f"{url}?page={page}"


def group_seasons(episodes: list[dict]) -> list[dict]:
    """Summarize an episode list per season: count and first/last episode number."""
    numbers: dict[int, list[int]] = {}
    for ep in episodes:
        numbers.setdefault(ep["season"], []).append(ep["number"])
    return [
        {
            "season": season,
            "episode_count": len(nums),
            "start_episode": min(nums),
            "end_episode": max(nums),
        }
        for season, nums in sorted(numbers.items())
    ]


def normalize_url(url: str | None) -> str | None:
    """Make protocol-relative and root-relative URLs absolute."""
    if not url:
        return None
    if url.startswith("//"):
        return "https:" + url
    if url.startswith("/"):
        return urljoin(BASE + "/", url)
    return url


def sanitize_text(text: str | None) -> str:
    """Collapse whitespace runs into single spaces."""
    if not text:
        return ""
    return " ".join(text.split())


def image_url(img) -> str | None:
    """Image URL from an <img>, preferring lazy-load attributes."""
    if img is None:
        return None
    for attr in ("data-src", "data-lazy-src", "src"):
        src = img.get(attr)
        if src and "svg+xml" not in src:
            return normalize_url(src)
    return None


def id_from_url(url: str) -> tuple[str, str | None]:
    """
    (type, slug) from a listing link.
    /series/naruto-shippuden/ → ("series", "naruto-shippuden")
    /movies/your-name/       → ("movie", "your-name")
    """
    match = re.search(r"/(series|movies)/([^/?#]+)", url or "")
    if match:
        return ("movie" if match.group(1) == "movies" else "series"), match.group(2)
    segments = [s for s in (url or "").split("?")[0].split("/") if s]
    if len(segments) > 1 and "." not in segments[-1]:
        return "series", segments[-1]
    return "series", None


def parse_episode_ref(url: str) -> dict | None:
    """
    /episode/naruto-shippuden-1x5/ → {"id": "naruto-shippuden-1x5",
    "anime_id": "naruto-shippuden", "season": 1, "number": 5}
    """
    match = re.search(r"/episode/([^/?#]+)-(\d+)x(\d+)", url or "")
    if match:
        slug, season, number = match.group(1), int(match.group(2)), int(match.group(3))
        return {"id": f"{slug}-{season}x{number}", "anime_id": slug, "season": season, "number": number}
    match = re.search(r"/episode/([^/?#]+)/?\?(?:.*&)?ep=(\d+)", url or "")
    if match:
        slug, number = match.group(1), int(match.group(2))
        return {"id": f"{slug}-1x{number}", "anime_id": slug, "season": 1, "number": number}
    return None


def find_video_in_html(html: str) -> str | None:
    """Look for .m3u8/.mp4 URLs in scripts or raw HTML."""
    patterns = [
        r'(?:file|source|src|url|video_url)\s*[:=]\s*["\']([^"\']+\.m3u8[^"\']*)["\']',
        r'(?:file|source|src|url|video_url)\s*[:=]\s*["\']([^"\']+\.mp4[^"\']*)["\']',
        r'(https?://[^\s"\'<>\\]+\.m3u8[^\s"\'<>\\]*)',
        r'(https?://[^\s"\'<>\\]+\.mp4[^\s"\'<>\\]*)',
    ]
    for pattern in patterns:
        match = re.search(pattern, html, re.IGNORECASE)
        if match:
            return normalize_url(match.group(1))
    return None
