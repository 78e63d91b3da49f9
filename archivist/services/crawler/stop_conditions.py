"""Decide, page by page, whether a listing crawl should keep going.

Most sites never say "this is the last page", so exhaustion is inferred from
several observations. Rules run in a fixed priority order and the first one
that matches a page decides for it:

1. error status         -> consecutive error counter, ERROR_RESPONSES at max
2. error/end phrase     -> ERROR_CONTENT immediately
3. zero new links       -> consecutive empty counter, EMPTY_PAGES at max
4. declining new links  -> DECLINING_TREND once the window is full
5. too few new links    -> MIN_LINKS
6. otherwise            -> CONTINUE

Explicit structural signals come first so a crawl never wanders past a
site's error page just because the item count looks healthy.
"""

import logging
from dataclasses import dataclass

from archivist.services.crawler.base import StopConfig, StopCounters, StopDecision

logger = logging.getLogger("archivist.crawler.stop_conditions")


@dataclass(frozen=True)
class Observation:
    """What one listing fetch revealed."""

    status_code: int | None  # None: the fetch failed before any response
    new_links: int
    content: str = ""

    @property
    def is_error(self) -> bool:
        return self.status_code is None or self.status_code >= 400


@dataclass(frozen=True)
class Evaluation:
    decision: StopDecision
    counters: StopCounters
    reason: str = ""


def find_error_phrase(content: str, phrases: tuple[str, ...] | list[str]) -> str | None:
    lowered = content.lower()
    for phrase in phrases:
        if phrase and phrase.lower() in lowered:
            return phrase
    return None


def is_strictly_decreasing(counts: tuple[int, ...]) -> bool:
    return all(later < earlier for earlier, later in zip(counts, counts[1:]))


def evaluate(counters: StopCounters, observation: Observation, config: StopConfig) -> Evaluation:
    """Evaluate one page. Pure: returns new counters, never mutates its inputs."""
    # Rule 1: error responses
    if observation.is_error:
        errors = counters.consecutive_errors + 1
        updated = StopCounters(
            consecutive_errors=errors,
            consecutive_empty=counters.consecutive_empty,
            history=counters.history,
        )
        if errors >= config.max_consecutive_errors:
            return Evaluation(
                StopDecision.ERROR_RESPONSES,
                updated,
                f"{errors} consecutive error responses (last status {observation.status_code})",
            )
        return Evaluation(StopDecision.CONTINUE, updated, f"error response {errors}/{config.max_consecutive_errors}")

    # Any non-error page resets the error run
    counters = StopCounters(
        consecutive_errors=0,
        consecutive_empty=counters.consecutive_empty,
        history=counters.history,
    )

    # Rule 2: explicit error or end-of-archive wording
    phrase = find_error_phrase(observation.content, config.error_phrases)
    if phrase is not None:
        return Evaluation(StopDecision.ERROR_CONTENT, counters, f"page content matched {phrase!r}")

    history = (counters.history + (observation.new_links,))[-config.trend_window:]

    # Rule 3: pages without anything new
    if observation.new_links == 0:
        empty = counters.consecutive_empty + 1
        updated = StopCounters(consecutive_errors=0, consecutive_empty=empty, history=history)
        if empty >= config.max_consecutive_empty:
            return Evaluation(StopDecision.EMPTY_PAGES, updated, f"{empty} consecutive pages without new links")
        return Evaluation(StopDecision.CONTINUE, updated, f"empty page {empty}/{config.max_consecutive_empty}")

    counters = StopCounters(consecutive_errors=0, consecutive_empty=0, history=history)

    # Rule 4: steadily shrinking yield
    if len(history) >= config.trend_window and is_strictly_decreasing(history):
        return Evaluation(
            StopDecision.DECLINING_TREND,
            counters,
            f"new links declining over {config.trend_window} pages: {list(history)}",
        )

    # Rule 5: yield below the floor
    if observation.new_links < config.min_new_links:
        return Evaluation(
            StopDecision.MIN_LINKS,
            counters,
            f"{observation.new_links} new links, minimum is {config.min_new_links}",
        )

    return Evaluation(StopDecision.CONTINUE, counters)
