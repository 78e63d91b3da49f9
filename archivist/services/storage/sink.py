"""Persistence sinks: where finished ContentItems go.

The artifact format on disk is somebody else's concern; a sink only has to
accept an item or raise PersistError.
"""

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from archivist.errors import PersistError
from archivist.models import ArchivedDocument, SourceRun
from archivist.services.crawler.base import ContentItem, SourceResult

logger = logging.getLogger("archivist.storage.sink")


class ContentSink(Protocol):
    async def save(self, item: ContentItem) -> None: ...

    async def record_result(self, result: SourceResult) -> None: ...


class MemorySink:
    """Keeps everything in lists. Handy for tests and dry runs."""

    def __init__(self):
        self.items: list[ContentItem] = []
        self.results: list[SourceResult] = []

    async def save(self, item: ContentItem) -> None:
        self.items.append(item)

    async def record_result(self, result: SourceResult) -> None:
        self.results.append(result)


class DatabaseSink:
    """Stores items as ArchivedDocument rows, one per (archive, url)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save(self, item: ContentItem) -> None:
        try:
            async with self.session_factory() as session:
                existing = await session.execute(
                    select(ArchivedDocument).where(
                        ArchivedDocument.archive == item.archive,
                        ArchivedDocument.url == item.url,
                    )
                )
                doc = existing.scalar_one_or_none()
                if doc is None:
                    doc = ArchivedDocument(archive=item.archive, url=item.url)
                    session.add(doc)
                else:
                    logger.debug("Replacing stored copy of %s", item.url)
                doc.source = item.source
                doc.title = item.title
                doc.content = item.text
                doc.degraded = item.degraded
                doc.word_count = len(item.text.split())
                doc.fetched_at = item.fetched_at
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistError(f"Could not store {item.url}: {e}") from e

    async def record_result(self, result: SourceResult) -> None:
        try:
            async with self.session_factory() as session:
                session.add(
                    SourceRun(
                        archive=result.archive,
                        source=result.source,
                        url=result.url,
                        pages_fetched=result.pages_fetched,
                        links_discovered=result.links_discovered,
                        items_saved=result.saved,
                        errors=result.errors,
                        stop_reason=result.stop_reason.value if result.stop_reason else None,
                        cancelled=result.cancelled,
                        error_message="\n".join(result.error_messages[-20:]) or None,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistError(f"Could not record run of {result.source}: {e}") from e
