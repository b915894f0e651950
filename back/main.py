"""
AnimeSalt API - scraping adapter
FastAPI Backend
"""

from contextlib import asynccontextmanager
from datetime import date
from typing import Awaitable, Callable, Optional
import asyncio
import importlib
import pkgutil
import os
import random

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

import config
from cache import ResponseCache
from fetcher import FetchError, close_client
from sources.base import AnimeSource

# One cache for the whole process, swept in the background while the app runs
response_cache = ResponseCache(capacity=config.CACHE_MAX_SIZE, default_ttl=config.CACHE_TTL)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    sweeper = asyncio.create_task(response_cache.run_sweeper(config.CACHE_SWEEP_INTERVAL))
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        await close_client()


class CacheControlMiddleware(BaseHTTPMiddleware):
    """Add Cache-Control headers for stable GET endpoints."""

    CACHE_RULES = {
        "/anime/": 300,      # 5 min for anime info & episodes
        "/category/": 900,   # 15 min for full listings
        "/search": 120,      # 2 min for search results
        "/home": 300,        # 5 min for homepage sections
        "/top-": 300,        # 5 min, sliced from the homepage
        "/schedule": 300,
        "/letters/": 3600,   # 1 hour, letters rarely change
        "/sources": 3600,    # 1 hour for source list
        "/health": 0,        # never cache health
    }

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if request.method == "GET" and response.status_code == 200:
            path = request.url.path
            for prefix, max_age in self.CACHE_RULES.items():
                if path.startswith(prefix) or path == prefix:
                    if max_age > 0:
                        response.headers["Cache-Control"] = f"public, max-age={max_age}"
                    else:
                        response.headers["Cache-Control"] = "no-store"
                    break
        return response


app = FastAPI(title="AnimeSalt API", version="0.1.0", lifespan=lifespan)

app.add_middleware(CacheControlMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# --- Source Plugin System ---
loaded_sources: dict[str, AnimeSource] = {}


def load_sources():
    """Dynamically load all source plugins from the sources/ directory."""
    sources_dir = os.path.join(os.path.dirname(__file__), "sources")
    for _, module_name, _ in pkgutil.iter_modules([sources_dir]):
        if module_name == "base":
            continue
        try:
            module = importlib.import_module(f"sources.{module_name}")
            if hasattr(module, "Source"):
                source_instance = module.Source()
                loaded_sources[source_instance.name] = source_instance
                print(f"✓ Loaded source: {source_instance.name}")
        except Exception as e:
            print(f"✗ Failed to load source {module_name}: {e}")


load_sources()


# --- Pydantic Models ---
class CacheInvalidation(BaseModel):
    prefix: str


# --- Helpers ---

def get_source(name: str) -> AnimeSource:
    if name not in loaded_sources:
        raise HTTPException(404, f"Source '{name}' not found")
    return loaded_sources[name]


async def cached_response(key: str, category: str, compute: Callable[[], Awaitable]) -> dict:
    """
    Serve `key` from the cache, or compute, cache and serve it.
    Partial listings (some pages failed) are served but not cached.
    """
    if config.CACHE_ENABLED:
        cached = response_cache.get(key)
        if cached is not None:
            return {"cached": True, "results": cached}

    try:
        results = await compute()
    except HTTPException:
        raise
    except FetchError as e:
        print(f"[api] Upstream error for {key}: {e}")
        if e.status_code == 404:
            raise HTTPException(404, str(e))
        raise HTTPException(502, str(e))
    except Exception as e:
        print(f"[api] Error for {key}: {e}")
        raise HTTPException(500, str(e))

    if results is None:
        raise HTTPException(404, "Not found")

    partial = isinstance(results, dict) and results.get("partial")
    if config.CACHE_ENABLED and not partial:
        response_cache.set(key, results, ttl=config.CACHE_TTLS[category])
    return {"cached": False, "results": results}


# --- API Routes ---

@app.get("/")
def root():
    return {"status": "ok", "sources": list(loaded_sources.keys())}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "base_url": config.BASE,
        "cache": response_cache.stats(),
    }


@app.get("/sources")
def list_sources():
    """List all available sources."""
    return [
        {"name": s.name, "language": s.language, "base_url": s.base_url}
        for s in loaded_sources.values()
    ]


def pick_source(name: Optional[str]) -> AnimeSource:
    """Named source, or the first loaded one."""
    src = get_source(name) if name else next(iter(loaded_sources.values()), None)
    if src is None:
        raise HTTPException(404, "No source loaded")
    return src


async def home_sections(src: AnimeSource) -> dict:
    return (await cached_response(f"home:{src.name}", "home", src.get_home))["results"]


@app.get("/home")
async def home(source: Optional[str] = None):
    """Homepage sections (trending, latest, genres...)."""
    src = pick_source(source)
    return await cached_response(f"home:{src.name}", "home", src.get_home)


@app.get("/search")
async def search(q: str = Query(""), page: int = Query(1, ge=1), source: Optional[str] = None):
    """Search for anime across sources."""
    if not q.strip():
        raise HTTPException(400, "Search keyword is required")

    sources_to_search = [get_source(source)] if source else list(loaded_sources.values())

    async def run_search():
        results = []
        errors = []
        for src in sources_to_search:
            try:
                src_results = await src.search(q, page)
                for r in src_results:
                    r["source"] = src.name
                results.extend(src_results)
            except Exception as e:
                print(f"[api] Search error on {src.name}: {e}")
                errors.append(e)
        # Every source failed
        if errors and len(errors) == len(sources_to_search):
            raise errors[-1]
        return results

    return await cached_response(
        f"search:{source or 'all'}:{q.strip().lower()}:{page}", "search", run_search
    )


@app.get("/search/suggest")
async def suggest(q: str = Query(""), limit: int = Query(10, ge=1, le=50), source: Optional[str] = None):
    """Autocomplete: titles containing the keyword (2 characters minimum)."""
    if len(q.strip()) < 2:
        return {"cached": False, "results": []}
    src = pick_source(source)
    return await cached_response(
        f"suggest:{src.name}:{q.strip().lower()}:{limit}", "search", lambda: src.suggest(q, limit)
    )


@app.get("/top-ten")
async def top_ten(source: Optional[str] = None):
    """Top 10 rankings for today / this week / this month."""
    src = pick_source(source)

    async def compute():
        sections = await home_sections(src)
        chart = sections.get("top_series", [])
        return {
            "today": sections.get("trending", [])[:10],
            "week": chart[:10],
            "month": chart[10:20],
        }

    return await cached_response(f"top_ten:{src.name}", "home", compute)


@app.get("/top-search")
async def top_search(limit: int = Query(10, ge=1, le=50), source: Optional[str] = None):
    """Popular titles to suggest before the user types anything."""
    src = pick_source(source)

    async def compute():
        sections = await home_sections(src)
        found = []
        seen = set()
        for section in ("trending", "spotlights", "latest"):
            for item in sections.get(section, []):
                title = item.get("title") or ""
                if not title or title.lower() in seen:
                    continue
                seen.add(title.lower())
                found.append({"id": item.get("id"), "title": title, "link": item.get("link")})
        return found[:limit]

    return await cached_response(f"top_search:{src.name}:{limit}", "home", compute)


@app.get("/schedule")
async def schedule(source: Optional[str] = None):
    """Latest aired episodes, listed as today's schedule."""
    src = pick_source(source)

    async def compute():
        sections = await home_sections(src)
        today = date.today().isoformat()
        return [
            {
                "id": ep["id"],
                "anime_id": ep.get("anime_id"),
                "title": ep.get("title"),
                "season": ep.get("season"),
                "episode_no": ep.get("number") or 0,
                "release_date": today,
            }
            for ep in sections.get("recent_episodes", [])
        ]

    return await cached_response(f"schedule:{src.name}", "home", compute)


@app.get("/random")
async def random_anime(source: Optional[str] = None):
    """Info of a random title picked from the homepage."""
    src = pick_source(source)
    sections = await home_sections(src)
    ids = sorted({
        item["id"]
        for section in ("spotlights", "trending", "top_series", "top_movies", "latest")
        for item in sections.get(section, [])
        if item.get("id")
    })
    if not ids:
        raise HTTPException(404, "No anime found on the homepage")
    anime_id = random.choice(ids)
    return await cached_response(
        f"info:{src.name}:{anime_id}", "info", lambda: src.get_anime_info(anime_id)
    )


@app.get("/anime/{source}/{anime_id:path}/info")
async def get_anime_info(source: str, anime_id: str):
    """Get anime details (title, poster, type, genres...)."""
    src = get_source(source)
    return await cached_response(
        f"info:{source}:{anime_id}", "info", lambda: src.get_anime_info(anime_id)
    )


@app.get("/anime/{source}/{anime_id:path}/episodes")
async def get_episodes(source: str, anime_id: str):
    """Get the full episode list for an anime (every page merged)."""
    src = get_source(source)
    return await cached_response(
        f"episodes:{source}:{anime_id}", "episodes", lambda: src.get_episodes(anime_id)
    )


@app.get("/episode/{source}/{episode_id:path}/video")
async def get_video_url(source: str, episode_id: str):
    """Get the video URL(s) for an episode."""
    src = get_source(source)
    return await cached_response(
        f"stream:{source}:{episode_id}", "stream", lambda: src.get_video_url(episode_id)
    )


@app.get("/episode/{source}/{episode_id:path}/servers")
async def get_servers(source: str, episode_id: str):
    """List the streaming servers available for an episode."""
    src = get_source(source)
    return await cached_response(
        f"servers:{source}:{episode_id}", "servers", lambda: src.get_servers(episode_id)
    )


@app.get("/category/{source}/{category_type}/{value}")
async def get_category(source: str, category_type: str, value: str):
    """All items of a category / genre / language / network / letter listing."""
    src = get_source(source)
    return await cached_response(
        f"category:{source}:{category_type}:{value.lower()}",
        "category",
        lambda: src.get_category(category_type, value),
    )


@app.get("/letters/{source}")
async def get_letters(source: str):
    """Letters that have at least one title."""
    src = get_source(source)
    return await cached_response(f"letters:{source}", "letters", src.get_letters)


# --- Cache Administration ---

@app.post("/cache/invalidate")
def invalidate_cache(data: CacheInvalidation):
    """Drop every cached entry whose key starts with `prefix`."""
    removed = response_cache.invalidate(data.prefix)
    return {"status": "ok", "removed": removed}


@app.delete("/cache")
def clear_cache():
    """Clear the whole response cache."""
    response_cache.clear()
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
