import pytest

from archivist.config import Settings
from archivist.services.crawler.base import SourceResult
from archivist.utils.robots import clear_robots_cache


@pytest.fixture
def fast_settings():
    """Settings with every delay zeroed and no .env file involved."""
    return Settings(
        _env_file=None,
        pure_api_key=None,
        crawl_delay_seconds=0,
        backoff_base_seconds=0,
        backoff_max_seconds=0,
        respect_robots_txt=False,
        max_concurrency=2,
        max_per_host=2,
    )


@pytest.fixture
def source_result():
    return SourceResult(archive="blog", source="Example blog", url="https://example.com/blog")


@pytest.fixture(autouse=True)
def _fresh_robots_cache():
    clear_robots_cache()
    yield
    clear_robots_cache()


@pytest.fixture
def listing_html():
    """Build a listing page: item links inside <main>, optional next link and body text."""

    def build(links, next_url=None, text=""):
        anchors = "".join(f'<li><a href="{href}">Item {i}</a></li>' for i, href in enumerate(links))
        pager = f'<div class="pagination"><a rel="next" href="{next_url}">Next</a></div>' if next_url else ""
        return (
            "<html><head><title>Listing</title></head><body>"
            '<nav><a href="/">Home</a><a href="/about">About</a></nav>'
            f"<main><p>{text}</p><ul>{anchors}</ul></main>{pager}"
            "<footer><a href=\"/contact\">Contact</a></footer></body></html>"
        )

    return build
