"""Tests for idiom selection and stop-threshold resolution."""

from datetime import date

import pytest

from archivist.errors import ConfigurationError
from archivist.schemas import Source, StopOverrides
from archivist.services.crawler.base import Idiom
from archivist.services.crawler.router import (
    initial_state,
    plan_source,
    resolve_idiom,
    resolve_stop_config,
)


def test_unknown_idiom_hint_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="Unknown pagination idiom"):
        resolve_idiom(Source(url="https://example.com/", idiom="carousel"))


@pytest.mark.parametrize(
    "hint, expected",
    [
        ("next-link", Idiom.NEXT_LINK),
        ("Pagination", Idiom.QUERY_PARAM),
        ("load_more", Idiom.LOAD_MORE),
        ("infinite-scroll", Idiom.INFINITE_SCROLL),
        ("date", Idiom.DATE_ARCHIVE),
    ],
)
def test_idiom_hint_aliases(hint, expected):
    assert resolve_idiom(Source(url="https://example.com/", idiom=hint)) is expected


def test_idiom_inference():
    assert resolve_idiom(Source(url="https://example.com/2024/05")) is Idiom.DATE_ARCHIVE
    assert resolve_idiom(Source(url="https://example.com/list", page_param="p")) is Idiom.QUERY_PARAM
    assert resolve_idiom(Source(url="https://example.com/feed", load_more_param="offset")) is Idiom.LOAD_MORE
    assert resolve_idiom(Source(url="https://example.com/blog")) is Idiom.NEXT_LINK


def test_date_hint_requires_date_url(fast_settings):
    with pytest.raises(ConfigurationError, match="year"):
        plan_source(Source(url="https://example.com/news", idiom="date"), fast_settings)


def test_page_pattern_requires_placeholder(fast_settings):
    with pytest.raises(ConfigurationError, match="placeholder"):
        plan_source(Source(url="https://example.com/blog", page_pattern="/blog/page/"), fast_settings)


def test_stop_config_defaults_come_from_settings(fast_settings):
    config = resolve_stop_config(Source(url="https://example.com/"), fast_settings)
    assert config.max_consecutive_errors == fast_settings.max_consecutive_errors
    assert config.max_consecutive_empty == fast_settings.max_consecutive_empty
    assert config.error_phrases == tuple(fast_settings.error_phrases)


def test_stop_overrides_merge_over_defaults(fast_settings):
    source = Source(
        url="https://example.com/",
        stop=StopOverrides(min_new_links=0, max_consecutive_empty=5, error_phrases=["the end"]),
    )
    config = resolve_stop_config(source, fast_settings)
    assert config.min_new_links == 0
    assert config.max_consecutive_empty == 5
    assert config.max_consecutive_errors == fast_settings.max_consecutive_errors
    assert config.error_phrases == ("the end",)


def test_plan_source(fast_settings):
    plan = plan_source(Source(url="https://example.com/2024/02", max_pages=7), fast_settings, today=date(2024, 9, 1))
    assert plan.idiom is Idiom.DATE_ARCHIVE
    assert plan.max_pages == 7
    assert plan.until == (2024, 9)
    assert plan.error_recheck == fast_settings.error_recheck


def test_plan_source_uses_global_page_cap(fast_settings):
    plan = plan_source(Source(url="https://example.com/blog"), fast_settings)
    assert plan.max_pages == fast_settings.max_pages_per_source


def test_initial_state_is_fresh(fast_settings):
    plan = plan_source(Source(url="https://example.com/list", page_param="p", start_page=0), fast_settings)
    first = initial_state(plan)
    first.visited.add("https://example.com/a")
    second = initial_state(plan)
    assert second.page == 0
    assert second.visited == set()
    assert second.pages_fetched == 0
