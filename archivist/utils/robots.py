import logging
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx

from archivist.config import settings

logger = logging.getLogger("archivist.robots")

# One parser per robots.txt URL for the life of the process
_robots_cache: dict[str, RobotFileParser] = {}


async def _load_parser(robots_url: str, client: httpx.AsyncClient) -> RobotFileParser:
    parser = RobotFileParser(robots_url)
    try:
        resp = await client.get(robots_url)
    except httpx.HTTPError as e:
        logger.warning("Failed to fetch %s, assuming everything is allowed: %s", robots_url, e)
        parser.allow_all = True
        return parser

    if resp.status_code == 200:
        parser.parse(resp.text.splitlines())
    else:
        # Missing or broken robots.txt means no restrictions
        parser.allow_all = True
    return parser


async def can_fetch(
    url: str,
    client: httpx.AsyncClient | None = None,
    user_agent: str | None = None,
) -> bool:
    """Check whether ``user_agent`` may fetch ``url`` according to the host's robots.txt."""
    parsed = urlparse(url)
    robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"

    parser = _robots_cache.get(robots_url)
    if parser is None:
        if client is None:
            async with httpx.AsyncClient(timeout=10, follow_redirects=True) as own_client:
                parser = await _load_parser(robots_url, own_client)
        else:
            parser = await _load_parser(robots_url, client)
        _robots_cache[robots_url] = parser

    return parser.can_fetch(user_agent or settings.user_agent, url)


def clear_robots_cache():
    _robots_cache.clear()
