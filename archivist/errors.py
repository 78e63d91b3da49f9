"""Error taxonomy for archive runs.

Only :class:`ConfigurationError` is allowed to halt a run. Everything else is
caught at the narrowest scope (item, page, source) and reported as a count
plus a reason string.
"""


class ArchivistError(Exception):
    """Base class for all archivist errors."""


class ConfigurationError(ArchivistError):
    """Invalid or missing archive/source definition. Fatal before crawling."""


class NetworkError(ArchivistError):
    """Timeout or connection failure. Transient."""


class TargetHTTPError(ArchivistError):
    """A target site answered with an error status."""

    def __init__(self, url: str, status_code: int):
        super().__init__(f"HTTP {status_code} from {url}")
        self.url = url
        self.status_code = status_code


class TargetClientError(TargetHTTPError):
    """4xx from a source host. Permanent for content items."""


class TargetServerError(TargetHTTPError):
    """5xx from a source host. Transient."""


class ExtractionError(ArchivistError):
    """Extraction service failure or missing credential. Never fatal."""


class PersistError(ArchivistError):
    """The persistence sink rejected an item."""
