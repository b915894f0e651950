"""
HTML fetching with retries.

One shared httpx.AsyncClient with browser-like headers. Rate limits (429),
server errors and network errors are retried with a linear backoff; any
other non-200 status fails straight away.
"""

import asyncio

import httpx

import config

_client: httpx.AsyncClient | None = None


class FetchError(Exception):
    """Raised when a page could not be fetched."""

    def __init__(self, url: str, reason: str, status_code: int | None = None):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status_code = status_code


def get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            headers=config.HEADERS,
            follow_redirects=True,
            timeout=config.REQUEST_TIMEOUT,
        )
    return _client


async def close_client() -> None:
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
    _client = None


def _retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


async def fetch_html(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    retries: int = config.REQUEST_RETRIES,
    retry_delay: float = config.RETRY_DELAY,
    params: dict | None = None,
) -> str:
    """GET a page and return its HTML. Raises FetchError after `retries` attempts."""
    client = client or get_client()
    reason = "no attempt made"
    status = None

    for attempt in range(1, retries + 1):
        try:
            resp = await client.get(url, params=params)
        except httpx.HTTPError as e:
            reason = f"{type(e).__name__}: {e}"
            status = None
        else:
            if resp.status_code == 200:
                return resp.text
            status = resp.status_code
            reason = f"HTTP {resp.status_code}"
            if not _retryable(resp.status_code):
                raise FetchError(url, reason, status)

        if attempt < retries:
            wait = retry_delay * attempt
            print(f"[fetcher] Attempt {attempt}/{retries} for {url} failed ({reason}), retrying in {wait:.1f}s")
            await asyncio.sleep(wait)

    raise FetchError(url, f"{reason} after {retries} attempts", status)
