import logging
from typing import AsyncIterator

from archivist.services.crawler.base import (
    EXHAUSTED,
    CrawlPlan,
    Idiom,
    ListingPage,
    PageRequest,
    SourceResult,
    StopCounters,
    StopDecision,
)
from archivist.services.crawler.fetcher import Fetcher
from archivist.services.crawler.links import extract_links
from archivist.services.crawler.navigator import first_request, next_request
from archivist.services.crawler.router import initial_state
from archivist.services.crawler.stop_conditions import Evaluation, Observation, evaluate

logger = logging.getLogger("archivist.crawler.listing")


class ListingCrawler:
    """Walk one source's listing to exhaustion, yielding new content-item URLs.

    Fetches are strictly sequential: every request depends on the page
    before it. The pagination state belongs to this loop alone.
    """

    def __init__(
        self,
        plan: CrawlPlan,
        fetcher: Fetcher,
        result: SourceResult,
        selector: str | None = None,
    ):
        self.plan = plan
        self.fetcher = fetcher
        self.result = result
        self.selector = selector
        self.state = initial_state(plan)
        self.reason = ""

    def _stop(self, decision: StopDecision, reason: str) -> None:
        self.state.last_decision = decision
        self.result.stop_reason = decision
        self.reason = reason
        logger.info(
            "Stopping %s after %d pages: %s (%s)",
            self.plan.source.label,
            self.state.pages_fetched,
            decision.value,
            reason,
        )

    def _cancelled(self) -> bool:
        if not self.fetcher.cancelled:
            return False
        self.result.cancelled = True
        logger.info("Cancelled %s after %d pages", self.plan.source.label, self.state.pages_fetched)
        return True

    def _apply(self, request: PageRequest) -> None:
        self.state.page = request.page
        self.state.loaded = request.loaded
        self.state.segment = request.segment
        if request.new_segment:
            # In-month counters start over for every date segment
            self.state.counters = StopCounters()
            self.state.last_decision = StopDecision.CONTINUE

    async def _fetch_page(self, url: str) -> ListingPage | None:
        fetched = await self.fetcher.fetch(url)
        if fetched.cancelled:
            return None
        if not fetched.ok:
            if fetched.error:
                self.result.record_error(f"listing {url}: {fetched.error}")
            return ListingPage(url=url, status_code=fetched.status_code)
        return extract_links(
            fetched.text,
            url,
            self.plan.source,
            visited=self.state.visited,
            status_code=fetched.status_code,
            selector=self.selector,
        )

    async def _observe(self, request: PageRequest) -> tuple[ListingPage, Evaluation] | None:
        """Fetch and evaluate a page, re-checking error responses before moving on."""
        rechecks = 0
        while True:
            page = await self._fetch_page(request.url)
            if page is None:
                return None
            evaluation = evaluate(
                self.state.counters,
                Observation(page.status_code, len(page.new_urls), page.text),
                self.plan.stop,
            )
            self.state.counters = evaluation.counters
            self.state.last_decision = evaluation.decision
            logger.debug(
                "%s page %d status=%s new=%d -> %s %s",
                self.plan.source.label,
                request.page,
                page.status_code,
                len(page.new_urls),
                evaluation.decision.value,
                evaluation.reason,
            )
            if not (page.is_error and not evaluation.decision.terminal and rechecks < self.plan.error_recheck):
                return page, evaluation
            rechecks += 1
            if self.fetcher.cancelled:
                return None

    async def crawl(self) -> AsyncIterator[str]:
        source = self.plan.source
        logger.info("Crawling %s (%s)", source.label, self.plan.idiom.value)
        request = first_request(self.plan)

        while True:
            if self._cancelled():
                return

            self._apply(request)
            observed = await self._observe(request)
            if observed is None:
                self.result.cancelled = True
                return
            page, evaluation = observed

            self.state.pages_fetched += 1
            self.state.listing_urls.add(request.url)
            self.result.pages_fetched = self.state.pages_fetched

            if evaluation.decision is not StopDecision.ERROR_CONTENT:
                for url in page.new_urls:
                    if url in self.state.visited:
                        continue
                    self.state.visited.add(url)
                    self.result.links_discovered += 1
                    yield url

            if self._cancelled():
                return

            # Date archives scope stop decisions to the current month
            if evaluation.decision.terminal and self.plan.idiom is not Idiom.DATE_ARCHIVE:
                self._stop(evaluation.decision, evaluation.reason)
                return

            if self.state.pages_fetched >= self.plan.max_pages:
                self._stop(StopDecision.MAX_PAGES, f"reached the {self.plan.max_pages} page cap")
                return

            following = next_request(self.plan, self.state, page)
            if following is EXHAUSTED:
                self._stop(StopDecision.END_MARKER, evaluation.reason or "no further listing pages")
                return
            request = following
