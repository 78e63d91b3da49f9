"""Tests for the page-by-page stop-condition evaluator."""

from archivist.services.crawler.base import StopConfig, StopCounters, StopDecision
from archivist.services.crawler.stop_conditions import (
    Observation,
    evaluate,
    find_error_phrase,
    is_strictly_decreasing,
)

DEFAULTS = StopConfig(
    max_consecutive_errors=2,
    max_consecutive_empty=3,
    min_new_links=1,
    trend_window=3,
    error_phrases=("page not found", "no more pages"),
)


def _run(observations, config=DEFAULTS):
    counters = StopCounters()
    decisions = []
    for observation in observations:
        evaluation = evaluate(counters, observation, config)
        counters = evaluation.counters
        decisions.append(evaluation.decision)
    return decisions, counters


def ok(new_links, content=""):
    return Observation(status_code=200, new_links=new_links, content=content)


def test_evaluate_is_pure():
    counters = StopCounters(consecutive_errors=1, consecutive_empty=1, history=(4, 3))
    observation = ok(2)
    first = evaluate(counters, observation, DEFAULTS)
    second = evaluate(counters, observation, DEFAULTS)
    assert first == second
    # Inputs are untouched
    assert counters == StopCounters(consecutive_errors=1, consecutive_empty=1, history=(4, 3))


def test_error_responses_stop_at_threshold():
    config = StopConfig(max_consecutive_errors=3)
    errors = [Observation(500, 0), Observation(404, 0), Observation(None, 0)]
    decisions, counters = _run(errors, config)
    assert decisions == [StopDecision.CONTINUE, StopDecision.CONTINUE, StopDecision.ERROR_RESPONSES]
    assert counters.consecutive_errors == 3


def test_error_run_is_reset_by_a_good_page():
    decisions, counters = _run([Observation(503, 0), ok(4), Observation(503, 0)])
    assert decisions == [StopDecision.CONTINUE] * 3
    assert counters.consecutive_errors == 1


def test_error_pages_do_not_touch_empty_counter_or_history():
    counters = StopCounters(consecutive_empty=1, history=(5, 0))
    evaluation = evaluate(counters, Observation(500, 0), DEFAULTS)
    assert evaluation.counters.consecutive_empty == 1
    assert evaluation.counters.history == (5, 0)


def test_empty_pages_stop_exactly_at_run_end():
    decisions, _ = _run([ok(4), ok(0), ok(0), ok(0)])
    assert decisions == [
        StopDecision.CONTINUE,
        StopDecision.CONTINUE,
        StopDecision.CONTINUE,
        StopDecision.EMPTY_PAGES,
    ]


def test_empty_run_interrupted_by_new_links_starts_over():
    decisions, counters = _run([ok(0), ok(0), ok(3), ok(0), ok(0)])
    assert StopDecision.EMPTY_PAGES not in decisions
    assert counters.consecutive_empty == 2


def test_error_phrase_stops_immediately():
    decisions, _ = _run([ok(5), ok(5, content="Sorry, Page Not Found on this site")])
    assert decisions == [StopDecision.CONTINUE, StopDecision.ERROR_CONTENT]


def test_error_status_outranks_error_phrase():
    evaluation = evaluate(StopCounters(), Observation(404, 0, "page not found"), DEFAULTS)
    assert evaluation.decision is StopDecision.CONTINUE
    assert evaluation.counters.consecutive_errors == 1


def test_scenario_error_status_stops_before_later_signals():
    # The error page is re-checked once before the listing moves on
    observations = [ok(5), ok(1), Observation(500, 0), Observation(500, 0), ok(0), ok(0, "no more pages")]
    decisions, _ = _run(observations)
    assert decisions[:4] == [
        StopDecision.CONTINUE,
        StopDecision.CONTINUE,
        StopDecision.CONTINUE,
        StopDecision.ERROR_RESPONSES,
    ]


def test_scenario_min_links_with_custom_thresholds():
    config = StopConfig(max_consecutive_empty=2, max_consecutive_errors=1, min_new_links=3)
    decisions, _ = _run([ok(5), ok(2)], config)
    assert decisions == [StopDecision.CONTINUE, StopDecision.MIN_LINKS]


def test_scenario_declining_trend():
    decisions, _ = _run([ok(10), ok(8), ok(6), ok(4), ok(2), ok(1), ok(0), ok(0)])
    assert decisions.index(StopDecision.DECLINING_TREND) == 2
    assert StopDecision.EMPTY_PAGES not in decisions[:3]


def test_trend_needs_a_full_window():
    config = StopConfig(trend_window=4)
    decisions, _ = _run([ok(10), ok(8), ok(6)], config)
    assert decisions == [StopDecision.CONTINUE] * 3


def test_flat_yield_is_not_a_declining_trend():
    decisions, counters = _run([ok(5), ok(5), ok(5), ok(5)])
    assert decisions == [StopDecision.CONTINUE] * 4
    assert counters.history == (5, 5, 5)


def test_min_links_never_fires_on_empty_pages():
    config = StopConfig(min_new_links=2)
    decisions, _ = _run([ok(0)], config)
    assert decisions == [StopDecision.CONTINUE]


def test_find_error_phrase_is_case_insensitive():
    assert find_error_phrase("The END OF RESULTS", ["end of results"]) == "end of results"
    assert find_error_phrase("Plenty of posts", ["end of results"]) is None
    assert find_error_phrase("anything", ["", "   x"]) is None


def test_is_strictly_decreasing():
    assert is_strictly_decreasing((3, 2, 1))
    assert not is_strictly_decreasing((3, 3, 1))
    assert not is_strictly_decreasing((1, 2, 3))
