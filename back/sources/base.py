"""
Base class for anime sources (plugin interface).

Every source plugin must:
1. Create a file in sources/ (e.g. sources/my_source.py)
2. Define a class named `Source` that inherits from `AnimeSource`
3. Implement all abstract methods

Listing item format (search, categories, home sections):
[
    {
        "id": "naruto-shippuden",
        "title": "Naruto Shippuden",
        "poster": "https://...",
        "type": "series | movie",
        "link": "https://site/series/naruto-shippuden/",
        "year": "2007",                  # optional
    }
]

Episodes list format:
[
    {
        "id": "naruto-shippuden-1x1",
        "season": 1,
        "number": 1,
        "title": "Episode Title",
        "link": "https://site/episode/naruto-shippuden-1x1/",
        "poster": "https://...",          # optional
    }
]

Video URL format:
{
    "url": "https://player.example/embed/...",
    "type": "iframe | hls | mp4",
    "referer": "https://source-site.com",
    "headers": {},
    "subtitles": [{"lang": "English", "url": "https://..."}],
    "sources": [{"name": "Server 1", "url": "..."}],
}

Server list format:
[{"id": "1", "name": "ZephyrFlick", "type": "sub | dub", "url": "https://..."}]

Paginated listings (episodes, categories) are returned as
{"items": [...], "total_pages": N, "failed_pages": [...], "partial": bool}.
The episode listing adds "total_episodes", "total_seasons" and
"seasons": [{"season": 1, "episode_count": 24, "start_episode": 1, "end_episode": 24}].
"""

from abc import ABC, abstractmethod


class AnimeSource(ABC):
    name: str = "base"
    language: str = "en"
    base_url: str = ""

    @abstractmethod
    async def search(self, query: str, page: int = 1) -> list[dict]:
        """Search for anime by title. Returns one page of anime results."""
        ...

    @abstractmethod
    async def get_episodes(self, anime_id: str) -> dict:
        """Get all episodes for a given anime, across every page."""
        ...

    @abstractmethod
    async def get_video_url(self, episode_id: str) -> dict:
        """Get the video stream URL for a given episode."""
        ...

    async def get_anime_info(self, anime_id: str) -> dict | None:
        """
        Get anime details (title, poster, type, genres, etc).
        Optional, returns None by default.
        """
        return None

    async def get_home(self) -> dict | None:
        """Homepage sections ({"trending": [...], ...}). Optional."""
        return None

    async def get_category(self, category_type: str, value: str) -> dict | None:
        """All items of a category/genre/language/letter listing. Optional."""
        return None

    async def get_letters(self) -> list[str]:
        """Letters that have at least one title. Optional."""
        return []

    async def get_servers(self, episode_id: str) -> list[dict] | None:
        """Streaming servers of an episode ([{"id", "name", "type", "url"}]). Optional."""
        return None

    async def suggest(self, query: str, limit: int = 10) -> list[dict]:
        """Search results whose title contains `query`, for autocomplete."""
        query = query.strip()
        if len(query) < 2:
            return []
        keyword = query.lower()
        results = await self.search(query)
        return [r for r in results if keyword in (r.get("title") or "").lower()][:limit]
