"""Compute the next listing request for each pagination idiom.

Every idiom is a plain function of (plan, state, last page). The navigator
never evaluates stop conditions; it only proposes the next fetch or reports a
structural dead end with ``EXHAUSTED``.
"""

import logging
import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from archivist.services.crawler.base import (
    EXHAUSTED,
    CrawlPlan,
    Idiom,
    ListingPage,
    PageRequest,
    PaginationState,
    StopDecision,
)

logger = logging.getLogger("archivist.crawler.navigator")

DATE_SEGMENT = re.compile(
    r"^(?P<root>https?://.*?)/(?P<year>(?:19|20)\d{2})/(?P<month>0?[1-9]|1[0-2])"
    r"(?:/page/(?P<page>\d+))?/?$"
)


def set_query_param(url: str, name: str, value: int) -> str:
    parsed = urlparse(url)
    params = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != name]
    params.append((name, str(value)))
    return urlunparse(parsed._replace(query=urlencode(params)))


def parse_date_url(url: str) -> tuple[str, int, int, int] | None:
    """Split ``<root>/<year>/<month>[/page/<n>]`` into its parts."""
    match = DATE_SEGMENT.match(urlparse(url)._replace(query="", fragment="").geturl())
    if not match:
        return None
    return (
        match.group("root"),
        int(match.group("year")),
        int(match.group("month")),
        int(match.group("page") or 1),
    )


def build_date_url(root: str, year: int, month: int, page: int = 1) -> str:
    url = f"{root}/{year:04d}/{month:02d}"
    if page > 1:
        url += f"/page/{page}"
    return url


def shift_month(year: int, month: int, step: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + step
    return index // 12, index % 12 + 1


def build_page_url(plan: CrawlPlan, page: int) -> str:
    source = plan.source
    if source.page_pattern:
        return urljoin(source.url, source.page_pattern.replace("{page}", str(page)))
    return set_query_param(source.url, source.page_param or "page", page)


def first_request(plan: CrawlPlan) -> PageRequest:
    source = plan.source
    if plan.idiom is Idiom.DATE_ARCHIVE:
        parsed = parse_date_url(source.url)
        if parsed is not None:
            root, year, month, page = parsed
            return PageRequest(url=build_date_url(root, year, month, page), page=page, segment=(year, month))
    if plan.idiom is Idiom.QUERY_PARAM:
        return PageRequest(url=source.url, page=source.start_page)
    return PageRequest(url=source.url, page=1)


def _next_link(plan: CrawlPlan, state: PaginationState, page: ListingPage):
    if not page.next_url:
        return EXHAUSTED
    return PageRequest(url=page.next_url, page=state.page + 1)


def _query_param(plan: CrawlPlan, state: PaginationState, page: ListingPage):
    return PageRequest(url=build_page_url(plan, state.page + 1), page=state.page + 1)


def _load_more(plan: CrawlPlan, state: PaginationState, page: ListingPage):
    step = plan.source.page_size or len(page.item_urls)
    loaded = state.loaded + step
    url = set_query_param(plan.source.url, plan.source.load_more_param or "offset", loaded)
    return PageRequest(url=url, page=state.page + 1, loaded=loaded)


def _infinite_scroll(plan: CrawlPlan, state: PaginationState, page: ListingPage):
    if page.more_url:
        return PageRequest(url=page.more_url, page=state.page + 1, loaded=state.loaded + len(page.item_urls))
    if plan.source.load_more_param or plan.source.page_size:
        return _load_more(plan, state, page)
    return EXHAUSTED


def _date_archive(plan: CrawlPlan, state: PaginationState, page: ListingPage):
    parsed = parse_date_url(plan.source.url)
    if parsed is None or state.segment is None:
        return EXHAUSTED
    root = parsed[0]
    year, month = state.segment

    # Links on an error page are page chrome, not content
    no_content = (
        not page.new_urls
        or page.is_error
        or state.last_decision is StopDecision.ERROR_CONTENT
    )
    month_done = state.last_decision.terminal or no_content
    if not month_done:
        return PageRequest(
            url=build_date_url(root, year, month, state.page + 1),
            page=state.page + 1,
            segment=state.segment,
        )

    if state.page == 1 and no_content:
        # A whole month with nothing on its first page ends the archive
        return EXHAUSTED

    step = -1 if plan.source.date_direction == "backward" else 1
    next_segment = shift_month(year, month, step)
    if step > 0 and plan.until is not None and next_segment > plan.until:
        return EXHAUSTED
    return PageRequest(
        url=build_date_url(root, *next_segment),
        page=1,
        segment=next_segment,
        new_segment=True,
    )


_IDIOMS = {
    Idiom.NEXT_LINK: _next_link,
    Idiom.QUERY_PARAM: _query_param,
    Idiom.LOAD_MORE: _load_more,
    Idiom.INFINITE_SCROLL: _infinite_scroll,
    Idiom.DATE_ARCHIVE: _date_archive,
}


def next_request(plan: CrawlPlan, state: PaginationState, page: ListingPage):
    """Return the next PageRequest, or EXHAUSTED at a structural dead end."""
    request = _IDIOMS[plan.idiom](plan, state, page)
    if request is EXHAUSTED:
        return EXHAUSTED
    if request.url in state.listing_urls:
        # Proposing a page we already fetched would loop forever
        logger.debug("Navigator proposed already-fetched %s, treating as exhausted", request.url)
        return EXHAUSTED
    return request
