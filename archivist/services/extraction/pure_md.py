import logging
from urllib.parse import quote

import httpx

from archivist.config import Settings, settings as default_settings
from archivist.errors import ExtractionError

logger = logging.getLogger("archivist.extraction.pure_md")

TOKEN_HEADER = "x-puremd-api-token"


class PureMdClient:
    """Client for the pure.md extraction service.

    Sends a fetched page's content and gets normalized markdown back. Every
    failure surfaces as ExtractionError so callers can fall back to local
    extraction; nothing here is fatal to a run.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None = None,
        settings: Settings = default_settings,
    ):
        self.client = client
        self.api_key = api_key if api_key is not None else settings.pure_api_key
        self.base_url = settings.extraction_base_url.rstrip("/")
        self.timeout = settings.extraction_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def extract(self, url: str, html: str) -> str:
        """Return normalized text for the page. Raise ExtractionError on failure."""
        if not self.api_key:
            raise ExtractionError("No extraction credential configured (PURE_API_KEY)")

        endpoint = f"{self.base_url}/{quote(url, safe='')}"
        try:
            resp = await self.client.post(
                endpoint,
                json={"url": url, "content": html},
                headers={TOKEN_HEADER: self.api_key},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise ExtractionError(f"Extraction request for {url} failed: {e}") from e

        if resp.status_code == 429:
            raise ExtractionError("Extraction rate limit exceeded")
        if resp.status_code >= 400:
            raise ExtractionError(f"Extraction service error: {resp.status_code} for {url}")

        text = resp.text.strip()
        if not text:
            raise ExtractionError(f"Extraction service returned nothing for {url}")
        return text
