import logging
from datetime import date

from archivist.config import Settings, settings as default_settings
from archivist.errors import ConfigurationError
from archivist.schemas import Source
from archivist.services.crawler.base import CrawlPlan, Idiom, PaginationState, StopConfig
from archivist.services.crawler.navigator import first_request, parse_date_url

logger = logging.getLogger("archivist.crawler.router")

# Accepted spellings for idiom hints
IDIOM_ALIASES = {
    "next": Idiom.NEXT_LINK,
    "next_link": Idiom.NEXT_LINK,
    "pagination": Idiom.QUERY_PARAM,
    "query_param": Idiom.QUERY_PARAM,
    "page_param": Idiom.QUERY_PARAM,
    "load_more": Idiom.LOAD_MORE,
    "infinite_scroll": Idiom.INFINITE_SCROLL,
    "date": Idiom.DATE_ARCHIVE,
    "date_archive": Idiom.DATE_ARCHIVE,
}


def resolve_idiom(source: Source) -> Idiom:
    """Use the explicit hint, or infer the idiom from the source's shape."""
    if source.idiom:
        key = source.idiom.strip().lower().replace("-", "_")
        if key not in IDIOM_ALIASES:
            raise ConfigurationError(
                f"Unknown pagination idiom {source.idiom!r} for {source.url}. "
                f"Available: {sorted(i.value for i in Idiom)}"
            )
        return IDIOM_ALIASES[key]

    if parse_date_url(source.url) is not None:
        return Idiom.DATE_ARCHIVE
    if source.page_param or source.page_pattern:
        return Idiom.QUERY_PARAM
    if source.load_more_param:
        return Idiom.LOAD_MORE
    return Idiom.NEXT_LINK


def resolve_stop_config(source: Source, settings: Settings) -> StopConfig:
    """Merge the source's overrides over the global defaults."""
    overrides = source.stop
    defaults = StopConfig(
        max_consecutive_errors=settings.max_consecutive_errors,
        max_consecutive_empty=settings.max_consecutive_empty,
        min_new_links=settings.min_new_links,
        trend_window=settings.trend_window,
        error_phrases=tuple(settings.error_phrases),
    )
    if overrides is None:
        return defaults
    return StopConfig(
        max_consecutive_errors=overrides.max_consecutive_errors or defaults.max_consecutive_errors,
        max_consecutive_empty=overrides.max_consecutive_empty or defaults.max_consecutive_empty,
        min_new_links=(
            overrides.min_new_links if overrides.min_new_links is not None else defaults.min_new_links
        ),
        trend_window=overrides.trend_window or defaults.trend_window,
        error_phrases=(
            tuple(overrides.error_phrases) if overrides.error_phrases is not None else defaults.error_phrases
        ),
    )


def plan_source(
    source: Source,
    settings: Settings = default_settings,
    today: date | None = None,
) -> CrawlPlan:
    """Pick the idiom and thresholds for a source. Fails fast on bad hints."""
    idiom = resolve_idiom(source)

    if idiom is Idiom.DATE_ARCHIVE and parse_date_url(source.url) is None:
        raise ConfigurationError(
            f"Date archive source {source.url} must look like <root>/<year>/<month>"
        )
    if source.page_pattern and "{page}" not in source.page_pattern:
        raise ConfigurationError(f"page_pattern for {source.url} has no {{page}} placeholder")

    today = today or date.today()
    plan = CrawlPlan(
        source=source,
        idiom=idiom,
        stop=resolve_stop_config(source, settings),
        max_pages=source.max_pages or settings.max_pages_per_source,
        error_recheck=settings.error_recheck,
        until=(today.year, today.month),
    )
    logger.debug("Planned %s: idiom=%s max_pages=%d", source.label, idiom.value, plan.max_pages)
    return plan


def initial_state(plan: CrawlPlan) -> PaginationState:
    """Fresh state for a crawl start; nothing carries over between crawls."""
    request = first_request(plan)
    return PaginationState(page=request.page, loaded=request.loaded, segment=request.segment)
