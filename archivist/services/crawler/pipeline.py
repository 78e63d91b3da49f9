import logging
import re
from datetime import datetime, timezone
from typing import Callable

from archivist.errors import ExtractionError, PersistError, TargetClientError
from archivist.schemas import Archive, Source
from archivist.services.crawler.base import ContentItem, SourceResult
from archivist.services.crawler.fetcher import Fetcher
from archivist.services.extraction.pure_md import PureMdClient
from archivist.services.extraction.text_processor import TextProcessor
from archivist.services.storage.sink import ContentSink

logger = logging.getLogger("archivist.crawler.pipeline")

_MARKDOWN_TITLE = re.compile(r"^#\s+(.+)$", re.MULTILINE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentPipeline:
    """Fetch, extract and persist one content item at a time.

    Every failure stays local to its item: it is counted on the
    SourceResult and the caller moves on to the next URL.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        extractor: PureMdClient,
        sink: ContentSink,
        text_processor: TextProcessor | None = None,
        claimed: set[str] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.fetcher = fetcher
        self.extractor = extractor
        self.sink = sink
        self.text_processor = text_processor or TextProcessor()
        # URLs already handed to production in this run, across all sources
        self.claimed = claimed if claimed is not None else set()
        self.clock = clock

    def claim(self, url: str) -> bool:
        """Check-then-insert with no await in between, so it is atomic on the loop."""
        if url in self.claimed:
            return False
        self.claimed.add(url)
        return True

    async def _extract(self, url: str, html: str, archive: Archive) -> tuple[str, bool]:
        """Return (text, degraded)."""
        if archive.extraction.enabled:
            try:
                return await self.extractor.extract(url, html), False
            except ExtractionError as e:
                if self.extractor.configured:
                    logger.warning("Extraction failed for %s, keeping raw content: %s", url, e)
                else:
                    logger.debug("No extraction credential, keeping raw content for %s", url)
        return self.text_processor.html_to_text(html, archive.extraction.content_selector), True

    def _title(self, text: str, html: str, url: str, degraded: bool) -> str:
        if not degraded:
            match = _MARKDOWN_TITLE.search(text)
            if match:
                return match.group(1).strip()
        return self.text_processor.extract_title(html, url)

    async def process(
        self,
        url: str,
        archive: Archive,
        source: Source,
        result: SourceResult,
    ) -> ContentItem | None:
        if not self.claim(url):
            logger.debug("Already archived in this run: %s", url)
            return None

        fetched = await self.fetcher.fetch(url)
        if fetched.cancelled:
            return None
        if not fetched.ok:
            if fetched.status_code is not None and fetched.status_code < 500:
                error = TargetClientError(url, fetched.status_code)
                result.record_error(f"item {url}: {error}")
            else:
                result.record_error(f"item {url}: {fetched.error}")
            logger.error("Skipping %s: %s", url, result.error_messages[-1])
            return None

        text, degraded = await self._extract(url, fetched.text, archive)
        item = ContentItem(
            url=url,
            title=self._title(text, fetched.text, url, degraded),
            text=text,
            archive=archive.name,
            source=source.label,
            fetched_at=self.clock(),
            degraded=degraded,
        )

        try:
            await self.sink.save(item)
        except PersistError as e:
            result.record_error(f"item {url}: {e}")
            logger.error("Failed to persist %s: %s", url, e)
            return None
        except Exception as e:
            result.record_error(f"item {url}: {type(e).__name__}: {e}")
            logger.exception("Unexpected sink failure for %s", url)
            return None

        result.saved += 1
        return item
