"""Tests for URL include/exclude patterns."""

from archivist.utils.patterns import matches_pattern, should_include


def test_plain_text_pattern_is_substring():
    assert matches_pattern("https://example.com/posts/42", "/posts/")
    assert not matches_pattern("https://example.com/tags/42", "/posts/")


def test_glob_matches_path():
    assert matches_pattern("https://example.com/2024/05/story", "/2024/*")
    assert matches_pattern("https://example.com/item.html", "*.html")
    assert not matches_pattern("https://example.com/item.php", "*.html")


def test_regex_pattern():
    assert matches_pattern("https://example.com/p/123", r"/p/\d+$")
    assert not matches_pattern("https://example.com/p/abc", r"/p/\d+$")


def test_invalid_regex_matches_nothing():
    assert not matches_pattern("https://example.com/(", "(unclosed")


def test_exclusions_win():
    assert not should_include("https://example.com/posts/draft", ["/posts/"], ["draft"])
    assert should_include("https://example.com/posts/final", ["/posts/"], ["draft"])


def test_no_patterns_includes_everything():
    assert should_include("https://example.com/anything")
    assert not should_include("https://example.com/about", include_patterns=["/posts/"])
