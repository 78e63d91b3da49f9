import asyncio
import logging

from archivist.config import Settings, settings as default_settings
from archivist.database import init_db, make_engine, make_session_factory
from archivist.schemas import parse_archives
from archivist.services.crawler.base import RunReport
from archivist.services.crawler.manager import run_archives
from archivist.services.storage.sink import ContentSink, DatabaseSink

logger = logging.getLogger("archivist.main")


def configure_logging(debug: bool | None = None) -> None:
    if debug is None:
        debug = default_settings.debug
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def _run_with_database(archives, settings: Settings) -> RunReport:
    engine = make_engine(settings.database_url)
    try:
        await init_db(engine)
        sink = DatabaseSink(make_session_factory(engine))
        return await run_archives(archives, sink, settings=settings)
    finally:
        await engine.dispose()


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def run(raw_archives, sink: ContentSink | None = None, settings: Settings = default_settings) -> RunReport:
    """Validate archive definitions and crawl them to completion.

    Without an explicit sink, items are stored in the configured database.
    """
    archives = parse_archives(raw_archives)
    if sink is None:
        report = _run_async(_run_with_database(archives, settings))
    else:
        report = _run_async(run_archives(archives, sink, settings=settings))

    for line in report.summary():
        logger.info(line)
    if report.failed:
        logger.error("Run saved nothing and recorded %d errors", report.errors)
    return report
