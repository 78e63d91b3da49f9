import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable

import httpx

from archivist.config import Settings, settings as default_settings
from archivist.errors import PersistError
from archivist.schemas import Archive, Source
from archivist.services.crawler.base import ArchiveStats, CrawlPlan, RunReport, SourceResult
from archivist.services.crawler.explorer import expand_hub, hub_plan
from archivist.services.crawler.fetcher import Fetcher, HostLimiter, build_client
from archivist.services.crawler.listing import ListingCrawler
from archivist.services.crawler.pipeline import ContentPipeline
from archivist.services.crawler.router import plan_source, resolve_idiom
from archivist.services.extraction.pure_md import PureMdClient
from archivist.services.storage.sink import ContentSink

logger = logging.getLogger("archivist.crawler.manager")


@dataclass
class SourceJob:
    archive: Archive
    source: Source
    plan: CrawlPlan


class StatsAccumulator:
    """Collects one SourceResult per finished source.

    ``record`` never awaits, so concurrent workers on the event loop are
    serialized through it without a lock.
    """

    def __init__(self, archives: list[Archive]):
        self.report = RunReport(archives={a.name: ArchiveStats(name=a.name) for a in archives})

    def record(self, result: SourceResult) -> None:
        stats = self.report.archives[result.archive]
        stats.sources.append(result)
        stats.saved += result.saved
        stats.errors += result.errors


def plan_jobs(
    archives: list[Archive],
    settings: Settings = default_settings,
    today: date | None = None,
) -> list[SourceJob]:
    """Resolve every configured source up front. ConfigurationError aborts the run."""
    jobs = []
    for archive in archives:
        for source in archive.sources:
            if source.strategy == "explorer":
                # Categories inherit the hub's hints, so check them now
                resolve_idiom(source)
                plan = hub_plan(source, settings)
            else:
                plan = plan_source(source, settings, today)
            jobs.append(SourceJob(archive=archive, source=source, plan=plan))
    return jobs


class ArchiveOrchestrator:
    """Run every source of every archive through a fixed-size worker pool."""

    def __init__(
        self,
        sink: ContentSink,
        settings: Settings = default_settings,
        client: httpx.AsyncClient | None = None,
        cancel: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: date | None = None,
    ):
        self.sink = sink
        self.settings = settings
        self.client = client
        self.cancel = cancel or asyncio.Event()
        self.sleep = sleep
        self.today = today

    async def run(self, archives: list[Archive]) -> RunReport:
        jobs = plan_jobs(archives, self.settings, self.today)
        self.stats = StatsAccumulator(archives)

        if not self.settings.pure_api_key and any(a.extraction.enabled for a in archives):
            logger.warning("PURE_API_KEY is not set; items will be archived as raw page text")

        if self.client is not None:
            await self._run_jobs(jobs, self.client)
        else:
            async with build_client(self.settings) as client:
                await self._run_jobs(jobs, client)

        report = self.stats.report
        report.cancelled = self.cancel.is_set()
        logger.info(
            "Run complete: archives=%d saved=%d errors=%d%s",
            len(report.archives),
            report.saved,
            report.errors,
            " (cancelled)" if report.cancelled else "",
        )
        return report

    async def _run_jobs(self, jobs: list[SourceJob], client: httpx.AsyncClient) -> None:
        limiter = HostLimiter(self.settings.max_per_host, self.settings.crawl_delay_seconds)
        self.fetcher = Fetcher(client, self.settings, limiter, self.cancel, self.sleep)
        self.pipeline = ContentPipeline(self.fetcher, PureMdClient(client, settings=self.settings), self.sink)

        self.queue: asyncio.Queue[SourceJob] = asyncio.Queue()
        for job in jobs:
            self.queue.put_nowait(job)

        workers = [
            asyncio.create_task(self._worker(i), name=f"archivist-worker-{i}")
            for i in range(max(1, self.settings.max_concurrency))
        ]
        timer = None
        if self.settings.run_timeout_seconds:
            timer = asyncio.get_running_loop().call_later(self.settings.run_timeout_seconds, self._timeout)

        drained = asyncio.create_task(self.queue.join())
        cancelled = asyncio.create_task(self.cancel.wait())
        try:
            await asyncio.wait({drained, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            if not drained.done():
                # No new fetches are issued from here on; give in-flight work a grace period
                logger.warning("Cancellation requested, waiting up to %.1fs", self.settings.cancel_grace_seconds)
                await asyncio.wait({drained}, timeout=self.settings.cancel_grace_seconds)
        finally:
            if timer is not None:
                timer.cancel()
            for task in (drained, cancelled, *workers):
                task.cancel()
            await asyncio.gather(drained, cancelled, *workers, return_exceptions=True)
            self._record_unstarted()

    def _timeout(self) -> None:
        logger.warning("Run timeout of %.1fs reached", self.settings.run_timeout_seconds)
        self.cancel.set()

    def _record_unstarted(self) -> None:
        while not self.queue.empty():
            job = self.queue.get_nowait()
            self.stats.record(self._new_result(job, cancelled=True))

    def _new_result(self, job: SourceJob, cancelled: bool = False) -> SourceResult:
        return SourceResult(
            archive=job.archive.name,
            source=job.source.label,
            url=job.source.url,
            cancelled=cancelled,
        )

    async def _worker(self, index: int) -> None:
        while True:
            job = await self.queue.get()
            try:
                await self._run_job(job)
            finally:
                self.queue.task_done()

    async def _run_job(self, job: SourceJob) -> None:
        result = self._new_result(job)
        try:
            if self.cancel.is_set():
                result.cancelled = True
            elif job.source.strategy == "explorer":
                await self._explore(job, result)
            else:
                await self._crawl(job, result)
        except asyncio.CancelledError:
            result.cancelled = True
            self.stats.record(result)
            raise
        except Exception as e:
            # One broken source must not take its siblings down
            logger.exception("Source %s failed", job.source.label)
            result.record_error(f"source failed: {type(e).__name__}: {e}")

        self.stats.record(result)
        try:
            await self.sink.record_result(result)
        except PersistError as e:
            logger.error("Could not record result for %s: %s", job.source.label, e)

    async def _crawl(self, job: SourceJob, result: SourceResult) -> None:
        crawler = ListingCrawler(job.plan, self.fetcher, result)
        async for url in crawler.crawl():
            await self.pipeline.process(url, job.archive, job.source, result)
        logger.info(
            "Finished %s: pages=%d links=%d saved=%d errors=%d stop=%s",
            job.source.label,
            result.pages_fetched,
            result.links_discovered,
            result.saved,
            result.errors,
            result.stop_reason.value if result.stop_reason else None,
        )

    async def _explore(self, job: SourceJob, result: SourceResult) -> None:
        async for category in expand_hub(job.source, self.fetcher, result, self.settings):
            plan = plan_source(category, self.settings, self.today)
            self.queue.put_nowait(SourceJob(archive=job.archive, source=category, plan=plan))


async def run_archives(
    archives: list[Archive],
    sink: ContentSink,
    settings: Settings = default_settings,
    cancel: asyncio.Event | None = None,
    client: httpx.AsyncClient | None = None,
) -> RunReport:
    """Crawl all archives and report counts. Only ConfigurationError propagates."""
    orchestrator = ArchiveOrchestrator(sink, settings=settings, client=client, cancel=cancel)
    return await orchestrator.run(archives)
