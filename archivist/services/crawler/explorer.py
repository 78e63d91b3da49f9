import logging
from typing import AsyncIterator
from urllib.parse import urlparse

from archivist.config import Settings, settings as default_settings
from archivist.schemas import Source
from archivist.services.crawler.base import CrawlPlan, Idiom, SourceResult
from archivist.services.crawler.fetcher import Fetcher
from archivist.services.crawler.listing import ListingCrawler
from archivist.services.crawler.router import resolve_stop_config

logger = logging.getLogger("archivist.crawler.explorer")


def hub_plan(source: Source, settings: Settings = default_settings) -> CrawlPlan:
    """Hubs are walked with next-link pagination and the source's stop thresholds."""
    if source.category_selector:
        # The selector picks categories; URL patterns are meant for the leaf items
        source = source.model_copy(update={"include_patterns": [], "exclude_patterns": []})
    return CrawlPlan(
        source=source,
        idiom=Idiom.NEXT_LINK,
        stop=resolve_stop_config(source, settings),
        max_pages=source.max_pages or settings.max_pages_per_source,
        error_recheck=settings.error_recheck,
    )


def category_source(parent: Source, url: str) -> Source:
    """A listing source for one category, inheriting the hub's hints."""
    slug = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1] or url
    return parent.model_copy(
        update={
            "url": url,
            "name": f"{parent.label} / {slug}",
            "strategy": "listing",
            "category_selector": None,
        }
    )


async def expand_hub(
    source: Source,
    fetcher: Fetcher,
    result: SourceResult,
    settings: Settings = default_settings,
) -> AsyncIterator[Source]:
    """Yield one synthetic listing Source per category found on the hub.

    Hub pages may themselves be paginated; discovery is bounded by the same
    stop conditions as any listing, with new category links as the volume
    signal.
    """
    crawler = ListingCrawler(
        hub_plan(source, settings),
        fetcher,
        result,
        selector=source.category_selector or source.link_selector,
    )
    count = 0
    async for url in crawler.crawl():
        count += 1
        yield category_source(source, url)
    logger.info("Hub %s expanded into %d categories", source.label, count)
