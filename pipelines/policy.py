"""Crawl policy checks: robots.txt compliance and asset blocking."""

import logging
import urllib.robotparser
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict
from urllib.parse import urljoin, urlparse

import aiohttp

logger = logging.getLogger(__name__)

ASSET_EXTENSIONS = frozenset({
    # images
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico", ".webp", ".bmp", ".tif", ".tiff",
    # styles, scripts, data
    ".css", ".js", ".mjs", ".map", ".json", ".xml", ".wasm",
    # fonts
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
    # media
    ".mp3", ".mp4", ".webm", ".ogg", ".wav", ".avi", ".mov",
    # archives and documents
    ".zip", ".gz", ".tgz", ".bz2", ".xz", ".tar", ".7z", ".pdf", ".epub",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
})

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


def is_asset_url(url: str) -> bool:
    """Whether the URL path points to a static asset rather than a page."""
    path = urlparse(url).path.lower()
    last = path.rsplit("/", 1)[-1]
    if "." not in last:
        return False
    return "." + last.rsplit(".", 1)[-1] in ASSET_EXTENSIONS


def is_html_content_type(content_type: str) -> bool:
    return content_type.split(";", 1)[0].strip().lower() in HTML_CONTENT_TYPES


@dataclass
class RobotsCache:
    """Cache entry for robots.txt data."""
    robots_parser: urllib.robotparser.RobotFileParser
    fetched_at: datetime
    ttl_hours: float = 24

    def is_expired(self) -> bool:
        """Check if the cache entry has expired."""
        return datetime.now() - self.fetched_at > timedelta(hours=self.ttl_hours)


class RobotsPolicy:
    """Fetches, caches and applies robots.txt rules per origin."""

    def __init__(self, user_agent: str, timeout: float = 10.0, ttl_hours: float = 24,
                 failure_ttl_hours: float = 0.25):
        self.user_agent = user_agent
        self.timeout = timeout
        self.ttl_hours = ttl_hours
        self.failure_ttl_hours = failure_ttl_hours
        self.robots_cache: Dict[str, RobotsCache] = {}

    def get_domain_key(self, url: str) -> str:
        """Extract domain key for caching."""
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    async def fetch_robots_txt(self, session: aiohttp.ClientSession,
                               url: str) -> urllib.robotparser.RobotFileParser:
        """Fetch and parse robots.txt for a given URL.

        Server errors and unreachable hosts yield an allow-all parser that is
        cached for ``failure_ttl_hours`` so the origin is not asked again for
        every page.
        """
        domain_key = self.get_domain_key(url)

        cache_entry = self.robots_cache.get(domain_key)
        if cache_entry and not cache_entry.is_expired():
            return cache_entry.robots_parser

        robots_url = urljoin(domain_key, "/robots.txt")
        rp = urllib.robotparser.RobotFileParser()
        rp.set_url(robots_url)
        ttl_hours = self.ttl_hours

        try:
            logger.info(f"Fetching robots.txt from {robots_url}")
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with session.get(robots_url, timeout=timeout, allow_redirects=True) as response:
                if response.status == 200:
                    rp.parse((await response.text(errors="replace")).splitlines())
                elif response.status in (401, 403):
                    # Access-restricted robots.txt disallows everything
                    rp.disallow_all = True
                elif 400 <= response.status < 500:
                    logger.info(f"No robots.txt found for {domain_key} ({response.status})")
                    rp.allow_all = True
                else:
                    logger.warning(f"Failed to fetch robots.txt from {robots_url}: HTTP {response.status}")
                    rp.allow_all = True
                    ttl_hours = self.failure_ttl_hours
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(f"Error fetching robots.txt from {robots_url}: {e}")
            rp.allow_all = True
            ttl_hours = self.failure_ttl_hours

        self.robots_cache[domain_key] = RobotsCache(
            robots_parser=rp,
            fetched_at=datetime.now(),
            ttl_hours=ttl_hours,
        )
        return rp

    async def can_fetch(self, session: aiohttp.ClientSession, url: str) -> bool:
        """Check if a URL can be fetched according to robots.txt.

        Unreachable robots.txt files are treated permissively.
        """
        robots_parser = await self.fetch_robots_txt(session, url)
        allowed = robots_parser.can_fetch(self.user_agent, url)
        if not allowed:
            logger.debug(f"Disallowed by robots.txt: {url}")
        return allowed
