"""Archive and source definitions.

These are consumed from an already-loaded configuration structure. Loading
the file itself is the caller's business; :func:`parse_archives` only turns
plain data into validated, immutable models.
"""

from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from archivist.errors import ConfigurationError


class StopOverrides(BaseModel):
    """Per-source overrides of the global stop thresholds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_consecutive_errors: int | None = Field(default=None, ge=1)
    max_consecutive_empty: int | None = Field(default=None, ge=1)
    min_new_links: int | None = Field(default=None, ge=0)
    trend_window: int | None = Field(default=None, ge=2)
    error_phrases: list[str] | None = None


class Source(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    name: str | None = None
    strategy: Literal["listing", "explorer"] = "listing"
    # Validated by the strategy router so unknown hints fail with a clear message
    idiom: str | None = None

    # Structural hints
    link_selector: str = "a[href]"
    include_patterns: list[str] = Field(default_factory=list)
    exclude_patterns: list[str] = Field(default_factory=list)
    same_domain: bool = True
    next_selector: str | None = None
    category_selector: str | None = None

    # Idiom parameters
    page_param: str | None = None
    page_pattern: str | None = None  # e.g. "https://example.com/blog/page/{page}"
    start_page: int = Field(default=1, ge=0)
    load_more_param: str | None = None
    page_size: int | None = Field(default=None, ge=1)
    date_direction: Literal["forward", "backward"] = "forward"

    max_pages: int | None = Field(default=None, ge=1)
    stop: StopOverrides | None = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"source url must be an absolute http(s) URL: {value!r}")
        return value

    @property
    def label(self) -> str:
        return self.name or self.url


class ExtractionOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    content_selector: str | None = None  # used by the degraded extractor


class Archive(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    sources: list[Source] = Field(min_length=1)
    extraction: ExtractionOptions = Field(default_factory=ExtractionOptions)

    @field_validator("sources", mode="before")
    @classmethod
    def _normalize_sources(cls, value):
        # A single source, or bare URL strings, are accepted as shorthand
        if isinstance(value, (str, dict, Source)):
            value = [value]
        if isinstance(value, list):
            return [{"url": item} if isinstance(item, str) else item for item in value]
        return value


def parse_archives(raw: list[dict] | dict) -> list[Archive]:
    """Validate raw archive definitions. Raise ConfigurationError on bad input."""
    if isinstance(raw, dict):
        raw = raw.get("archives", [raw])
    if not raw:
        raise ConfigurationError("No archives configured")

    archives = []
    for index, entry in enumerate(raw):
        try:
            archives.append(Archive.model_validate(entry))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid archive #{index + 1}: {e}") from e

    names = [a.name for a in archives]
    duplicates = {n for n in names if names.count(n) > 1}
    if duplicates:
        raise ConfigurationError(f"Duplicate archive names: {sorted(duplicates)}")
    return archives
