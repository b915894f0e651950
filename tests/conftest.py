import pytest

from cache import ResponseCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_cache(clock):
    def _factory(capacity: int = 3, default_ttl: float = 60) -> ResponseCache:
        return ResponseCache(capacity=capacity, default_ttl=default_ttl, clock=clock)

    return _factory


def listing_page(cards: list[tuple[str, str]], pages: int = 1, current: int = 1) -> str:
    """Archive page HTML with `cards` as (slug, title) and a pagination block."""
    articles = "".join(
        f'<article class="post"><a href="/series/{slug}/">'
        f'<img data-src="//cdn.example/{slug}.jpg" alt="{title}">'
        f'<h2 class="entry-title">{title}</h2></a><span class="year">2021</span></article>'
        for slug, title in cards
    )
    links = "".join(
        f'<span class="page-numbers current">{n}</span>' if n == current
        else f'<a class="page-numbers" href="/category/anime/?page={n}">{n}</a>'
        for n in range(1, pages + 1)
    )
    return (
        "<html><body>"
        f'<div class="posts">{articles}</div>'
        f'<nav class="pagination">{links}</nav>'
        "</body></html>"
    )


@pytest.fixture
def make_listing_page():
    return listing_page
