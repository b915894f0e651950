"""
Paginated listing aggregator.

Fetches every page of a paginated listing (category archives, long episode
lists, ...) and merges them into one deduplicated, sorted list.

Page 1 is always fetched first: it tells us how many pages exist. The rest
are fetched in batches of `concurrency_limit` so we never hammer the source
site (and trip its own rate limiting). A failing page after the first one is
skipped and reported in `failed_pages`; a failing first page fails the call.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Hashable, Iterable

DEFAULT_CONCURRENCY = 3
DEFAULT_MAX_PAGES = 100


@dataclass
class PageFetchResult:
    items: list
    page_number: int
    # Parsed page (e.g. a BeautifulSoup), used for total-page detection
    document: Any = None


@dataclass
class AggregationResult:
    items: list
    total_pages: int
    failed_pages: list[int] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed_pages)

    def to_dict(self) -> dict:
        return {
            "items": self.items,
            "total_pages": self.total_pages,
            "failed_pages": self.failed_pages,
            "partial": self.partial,
        }


async def gather_bounded(
    factories: Iterable[Callable[[], Awaitable[Any]]],
    limit: int = DEFAULT_CONCURRENCY,
) -> list:
    """
    Run coroutine factories in batches of at most `limit` concurrent calls.

    Each batch is awaited before the next one starts. Returns one entry per
    factory, in input order: the result, or the exception it raised.
    """
    if limit < 1:
        raise ValueError(f"concurrency limit must be >= 1, got {limit}")
    factories = list(factories)
    results = []
    for start in range(0, len(factories), limit):
        batch = factories[start:start + limit]
        results.extend(
            await asyncio.gather(*(f() for f in batch), return_exceptions=True)
        )
    return results


def _clamp_pages(detected, max_pages: int) -> int:
    if isinstance(detected, bool) or not isinstance(detected, int) or detected < 1:
        return 1
    return min(detected, max_pages)


async def fetch_all(
    fetch_page: Callable[[int], Awaitable[PageFetchResult]],
    detect_total_pages: Callable[[PageFetchResult], int],
    identity_key: Callable[[Any], Hashable],
    sort_key: Callable[[Any], Any] | None = None,
    *,
    concurrency_limit: int = DEFAULT_CONCURRENCY,
    max_pages: int = DEFAULT_MAX_PAGES,
    page_timeout: float | None = None,
    label: str = "aggregator",
) -> AggregationResult:
    """
    Fetch all pages of a listing and return the merged items.

    fetch_page(n)            -> PageFetchResult for 1-based page n
    detect_total_pages(first) -> page count read from page 1 (1 if unknown)
    identity_key(item)       -> dedup key; the first occurrence wins
    sort_key(item)           -> ordering of the final list (None keeps page order)
    """
    if concurrency_limit < 1:
        raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
    if max_pages < 1:
        raise ValueError(f"max_pages must be >= 1, got {max_pages}")

    async def fetch(page: int) -> PageFetchResult:
        if page_timeout is None:
            return await fetch_page(page)
        return await asyncio.wait_for(fetch_page(page), timeout=page_timeout)

    # Page 1 errors propagate: nothing to aggregate without it
    first = await fetch(1)
    total_pages = _clamp_pages(detect_total_pages(first), max_pages)

    pages: dict[int, list] = {1: list(first.items)}
    failed_pages: list[int] = []

    if total_pages > 1:
        numbers = list(range(2, total_pages + 1))
        results = await gather_bounded(
            [lambda n=n: fetch(n) for n in numbers],
            concurrency_limit,
        )
        for number, result in zip(numbers, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                print(f"[{label}] Page {number}/{total_pages} failed: {result!r}")
                failed_pages.append(number)
                continue
            pages[number] = list(result.items)

    items = []
    seen = set()
    for number in sorted(pages):
        for item in pages[number]:
            key = identity_key(item)
            if key in seen:
                continue
            seen.add(key)
            items.append(item)

    if sort_key is not None:
        items.sort(key=sort_key)

    if failed_pages:
        print(
            f"[{label}] Partial result: {len(failed_pages)}/{total_pages} pages failed "
            f"({len(items)} items kept)"
        )

    return AggregationResult(items=items, total_pages=total_pages, failed_pages=failed_pages)
