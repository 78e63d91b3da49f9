import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar
from urllib.parse import urlparse

import httpx

from archivist.config import Settings, settings as default_settings
from archivist.errors import NetworkError, TargetServerError
from archivist.utils.robots import can_fetch

logger = logging.getLogger("archivist.crawler.fetcher")

T = TypeVar("T")

# Client statuses that are worth another try
TRANSIENT_STATUS = {408, 425, 429}


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: base, 2*base, 4*base ... capped at max_delay."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.max_attempts),
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_max_seconds,
        )

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


@dataclass
class Attempted(Generic[T]):
    """Outcome of a retried call: a value or the last error, plus attempts used."""

    attempts: int
    value: T | None = None
    error: Exception | None = None


async def retry(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: tuple[type[Exception], ...] = (NetworkError, TargetServerError),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "",
) -> Attempted[T]:
    """Run ``call`` up to ``policy.max_attempts`` times on transient errors."""
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return Attempted(attempts=attempt, value=await call())
        except retry_on as e:
            if attempt == policy.max_attempts:
                logger.warning("Giving up on %s after %d attempts: %s", label, attempt, e)
                return Attempted(attempts=attempt, error=e)
            wait = policy.delay(attempt)
            logger.warning("Attempt %d for %s failed (%s), retrying in %.1fs", attempt, label, e, wait)
            await sleep(wait)
    raise AssertionError("unreachable")


class HostLimiter:
    """Caps in-flight requests per host and spaces them by the crawl delay.

    Shared by every crawl in a run so parallel sources on the same host
    still respect one budget.
    """

    def __init__(self, max_per_host: int = 1, delay: float = 0.0):
        self.max_per_host = max(1, max_per_host)
        self.delay = delay
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._last_request: dict[str, float] = {}

    @asynccontextmanager
    async def slot(self, url: str):
        host = urlparse(url).netloc.lower()
        semaphore = self._semaphores.setdefault(host, asyncio.Semaphore(self.max_per_host))
        async with semaphore:
            if self.delay > 0 and host in self._last_request:
                remaining = self._last_request[host] + self.delay - time.monotonic()
                if remaining > 0:
                    await asyncio.sleep(remaining)
            try:
                yield
            finally:
                self._last_request[host] = time.monotonic()


@dataclass
class FetchResult:
    url: str
    status_code: int | None  # None: no response (network failure, blocked, cancelled)
    text: str = ""
    attempts: int = 0
    error: str | None = None
    blocked: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.status_code is not None and self.status_code < 400


class Fetcher:
    """GET-only access to target hosts with retries, host limits and robots.txt."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings = default_settings,
        limiter: HostLimiter | None = None,
        cancel: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.settings = settings
        self.policy = RetryPolicy.from_settings(settings)
        self.limiter = limiter or HostLimiter(settings.max_per_host, settings.crawl_delay_seconds)
        self.cancel = cancel or asyncio.Event()
        self.sleep = sleep

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()

    async def _get_once(self, url: str) -> FetchResult:
        if self.cancelled:
            return FetchResult(url=url, status_code=None, error="cancelled", cancelled=True)
        async with self.limiter.slot(url):
            try:
                resp = await self.client.get(url)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                raise NetworkError(f"{type(e).__name__} fetching {url}: {e}") from e
        if resp.status_code >= 500 or resp.status_code in TRANSIENT_STATUS:
            raise TargetServerError(url, resp.status_code)
        return FetchResult(url=url, status_code=resp.status_code, text=resp.text)

    async def fetch(self, url: str) -> FetchResult:
        """Fetch ``url``; transient failures are retried, then reported, never raised."""
        if self.settings.respect_robots_txt and not await can_fetch(url, self.client, self.settings.user_agent):
            logger.info("Blocked by robots.txt: %s", url)
            return FetchResult(url=url, status_code=None, error="blocked by robots.txt", blocked=True)

        outcome = await retry(lambda: self._get_once(url), self.policy, sleep=self.sleep, label=url)
        if outcome.value is not None:
            outcome.value.attempts = outcome.attempts
            return outcome.value
        if isinstance(outcome.error, TargetServerError):
            return FetchResult(
                url=url,
                status_code=outcome.error.status_code,
                attempts=outcome.attempts,
                error=str(outcome.error),
            )
        return FetchResult(url=url, status_code=None, attempts=outcome.attempts, error=str(outcome.error))


def build_client(settings: Settings = default_settings, **kwargs) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.request_timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
        **kwargs,
    )
