"""
Runtime configuration for the AnimeSalt API.

Plain module constants. A few can be overridden from the environment
(handy for docker / tests), everything else is edited here.
"""

import os

BASE = os.environ.get("ANIMESALT_BASE_URL", "https://animesalt.cc").rstrip("/")

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))

# ── Upstream requests ─────────────────────────────────────────

REQUEST_TIMEOUT = 15     # seconds, per request
REQUEST_RETRIES = 3
RETRY_DELAY = 1.0        # seconds, multiplied by the attempt number

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": BASE + "/",
}

# ── Pagination ────────────────────────────────────────────────

PAGE_CONCURRENCY = int(os.environ.get("PAGE_CONCURRENCY", "3"))
MAX_PAGES = int(os.environ.get("MAX_PAGES", "100"))
PAGE_TIMEOUT = 30        # seconds, per page (covers retries)

# ── Cache ─────────────────────────────────────────────────────

CACHE_ENABLED = os.environ.get("CACHE_ENABLED", "1") not in ("0", "false", "no")
CACHE_MAX_SIZE = int(os.environ.get("CACHE_MAX_SIZE", "1000"))
CACHE_TTL = float(os.environ.get("CACHE_TTL", "300"))   # 5 min default
CACHE_SWEEP_INTERVAL = 60

# TTLs per category (in seconds)
CACHE_TTLS = {
    "home": 300,         # 5 min
    "info": 600,         # 10 min
    "episodes": 600,     # 10 min, episode list rarely changes
    "search": 120,       # 2 min, searches can vary
    "category": 900,     # 15 min, full listings are expensive
    "letters": 3600,     # 1 hour, probes 26 pages
    "stream": 300,       # 5 min, embed URLs can expire
    "servers": 300,      # 5 min, same page as stream
}
