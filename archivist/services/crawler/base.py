from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from archivist.schemas import Source


class Idiom(str, Enum):
    """Pagination idioms. Dispatch happens in the navigator, keyed on this tag."""

    NEXT_LINK = "next_link"
    QUERY_PARAM = "query_param"
    LOAD_MORE = "load_more"
    INFINITE_SCROLL = "infinite_scroll"
    DATE_ARCHIVE = "date_archive"


class StopDecision(str, Enum):
    CONTINUE = "continue"
    END_MARKER = "end_marker"
    ERROR_RESPONSES = "error_responses"
    ERROR_CONTENT = "error_content"
    EMPTY_PAGES = "empty_pages"
    DECLINING_TREND = "declining_trend"
    MIN_LINKS = "min_links"
    MAX_PAGES = "max_pages"

    @property
    def terminal(self) -> bool:
        return self is not StopDecision.CONTINUE


@dataclass(frozen=True)
class StopConfig:
    """Resolved stop thresholds for one source (overrides merged over defaults)."""

    max_consecutive_errors: int = 2
    max_consecutive_empty: int = 3
    min_new_links: int = 1
    trend_window: int = 3
    error_phrases: tuple[str, ...] = ()


@dataclass(frozen=True)
class StopCounters:
    """Rolling counters owned by one source crawl.

    Replaced wholesale after every evaluation, never mutated in place.
    """

    consecutive_errors: int = 0
    consecutive_empty: int = 0
    history: tuple[int, ...] = ()  # new-link counts, most recent last


@dataclass(frozen=True)
class PageRequest:
    """The next listing fetch proposed by the navigator."""

    url: str
    page: int
    loaded: int = 0
    segment: tuple[int, int] | None = None  # (year, month) for date archives
    new_segment: bool = False


class _Exhausted:
    def __repr__(self) -> str:
        return "EXHAUSTED"


EXHAUSTED = _Exhausted()


@dataclass
class ListingPage:
    """One fetched listing page after link extraction."""

    url: str
    status_code: int | None  # None when the fetch failed at the network level
    item_urls: list[str] = field(default_factory=list)
    new_urls: list[str] = field(default_factory=list)
    next_url: str | None = None
    more_url: str | None = None
    text: str = ""

    @property
    def is_error(self) -> bool:
        return self.status_code is None or self.status_code >= 400


@dataclass(frozen=True)
class CrawlPlan:
    """Everything the listing loop needs to drive one source."""

    source: Source
    idiom: Idiom
    stop: StopConfig
    max_pages: int
    error_recheck: int = 1
    # Latest (year, month) a forward date traversal may reach
    until: tuple[int, int] | None = None


@dataclass
class PaginationState:
    """Per-crawl state, exclusively owned by one source's listing loop."""

    page: int = 1
    loaded: int = 0
    segment: tuple[int, int] | None = None
    pages_fetched: int = 0
    visited: set[str] = field(default_factory=set)
    listing_urls: set[str] = field(default_factory=set)
    counters: StopCounters = field(default_factory=StopCounters)
    last_decision: StopDecision = StopDecision.CONTINUE


@dataclass(frozen=True)
class ContentItem:
    url: str
    title: str
    text: str
    archive: str
    source: str
    fetched_at: datetime
    degraded: bool = False  # raw-content fallback instead of service output


@dataclass
class SourceResult:
    archive: str
    source: str
    url: str
    pages_fetched: int = 0
    links_discovered: int = 0
    saved: int = 0
    errors: int = 0
    stop_reason: StopDecision | None = None
    cancelled: bool = False
    error_messages: list[str] = field(default_factory=list)

    def record_error(self, message: str) -> None:
        self.errors += 1
        self.error_messages.append(message)


@dataclass
class ArchiveStats:
    name: str
    saved: int = 0
    errors: int = 0
    sources: list[SourceResult] = field(default_factory=list)


@dataclass
class RunReport:
    archives: dict[str, ArchiveStats] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def saved(self) -> int:
        return sum(a.saved for a in self.archives.values())

    @property
    def errors(self) -> int:
        return sum(a.errors for a in self.archives.values())

    @property
    def failed(self) -> bool:
        """A run fails only when nothing was saved and something went wrong."""
        return self.saved == 0 and self.errors > 0

    def stop_reasons(self) -> dict[str, StopDecision | None]:
        return {
            f"{a.name}:{s.source}": s.stop_reason
            for a in self.archives.values()
            for s in a.sources
        }

    def summary(self) -> list[str]:
        lines = []
        for stats in self.archives.values():
            lines.append(f"{stats.name}: saved={stats.saved} errors={stats.errors}")
            for s in stats.sources:
                reason = s.stop_reason.value if s.stop_reason else "none"
                suffix = " (cancelled)" if s.cancelled else ""
                lines.append(
                    f"  {s.source}: pages={s.pages_fetched} links={s.links_discovered} "
                    f"saved={s.saved} errors={s.errors} stop={reason}{suffix}"
                )
        lines.append(f"total: saved={self.saved} errors={self.errors}")
        return lines
