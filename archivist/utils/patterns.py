import fnmatch
import logging
import re
from functools import lru_cache

logger = logging.getLogger("archivist.patterns")

# Characters that only make sense in a regular expression, not in a glob
_REGEX_HINTS = ("^", "$", "\\", "|", "(", ")", "+", ".*")
_SCHEME_AND_HOST = re.compile(r"^[a-z][a-z0-9+.-]*://[^/]+", re.IGNORECASE)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> tuple[str, re.Pattern | None]:
    """Return (kind, compiled) where kind is regex, glob or text."""
    if any(hint in pattern for hint in _REGEX_HINTS):
        kind, source = "regex", pattern
    elif "*" in pattern or "?" in pattern:
        kind, source = "glob", fnmatch.translate(pattern)
    else:
        kind, source = "text", re.escape(pattern)
    try:
        return kind, re.compile(source, re.IGNORECASE)
    except re.error as e:
        logger.warning("Invalid URL pattern %r: %s", pattern, e)
        return kind, None


def matches_pattern(url: str, pattern: str) -> bool:
    """Match a URL against a regex, a glob, or a plain substring."""
    kind, compiled = _compile(pattern)
    if compiled is None:
        return False
    if kind == "glob":
        # Globs are anchored: try the full URL, then the path and query alone
        return bool(compiled.match(url) or compiled.match(_SCHEME_AND_HOST.sub("", url)))
    return bool(compiled.search(url))


def should_include(
    url: str,
    include_patterns: list[str] | None = None,
    exclude_patterns: list[str] | None = None,
) -> bool:
    """Exclusions win; with include patterns present, at least one must match."""
    if exclude_patterns and any(matches_pattern(url, p) for p in exclude_patterns):
        return False
    if include_patterns:
        return any(matches_pattern(url, p) for p in include_patterns)
    return True
