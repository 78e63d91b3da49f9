"""Tests for the database sink, run against SQLite."""

import asyncio
from datetime import datetime, timezone

from sqlalchemy import select

from archivist.database import init_db, make_engine, make_session_factory
from archivist.models import ArchivedDocument, SourceRun
from archivist.services.crawler.base import ContentItem, SourceResult, StopDecision
from archivist.services.storage.sink import DatabaseSink, MemorySink


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _item(text="Some archived words here", title="First"):
    return ContentItem(
        url="https://example.com/posts/1",
        title=title,
        text=text,
        archive="blog",
        source="Example blog",
        fetched_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        degraded=True,
    )


def _with_sink(tmp_path, body):
    async def go():
        engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'archive.db'}")
        try:
            await init_db(engine)
            factory = make_session_factory(engine)
            await body(DatabaseSink(factory))
            async with factory() as session:
                docs = (await session.execute(select(ArchivedDocument))).scalars().all()
                runs = (await session.execute(select(SourceRun))).scalars().all()
                return docs, runs
        finally:
            await engine.dispose()

    return _run_async(go())


def test_database_sink_stores_item(tmp_path):
    async def body(sink):
        await sink.save(_item())

    docs, _ = _with_sink(tmp_path, body)
    assert len(docs) == 1
    doc = docs[0]
    assert doc.url == "https://example.com/posts/1"
    assert doc.archive == "blog"
    assert doc.degraded is True
    assert doc.word_count == 4


def test_database_sink_replaces_same_url(tmp_path):
    async def body(sink):
        await sink.save(_item())
        await sink.save(_item(text="Updated text", title="Second"))

    docs, _ = _with_sink(tmp_path, body)
    assert len(docs) == 1
    assert docs[0].title == "Second"
    assert docs[0].content == "Updated text"


def test_database_sink_records_source_run(tmp_path):
    result = SourceResult(
        archive="blog",
        source="Example blog",
        url="https://example.com/blog",
        pages_fetched=4,
        links_discovered=12,
        saved=11,
        stop_reason=StopDecision.EMPTY_PAGES,
    )
    result.record_error("item https://example.com/posts/9: HTTP 404")

    async def body(sink):
        await sink.record_result(result)

    _, runs = _with_sink(tmp_path, body)
    assert len(runs) == 1
    run = runs[0]
    assert run.stop_reason == "empty_pages"
    assert run.items_saved == 11
    assert run.errors == 1
    assert "HTTP 404" in run.error_message


def test_memory_sink_keeps_everything():
    sink = MemorySink()
    _run_async(sink.save(_item()))
    assert sink.items == [_item()]
