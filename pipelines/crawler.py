"""Web crawler pipeline for docsearch.

Breadth-first, same-host crawl of a documentation site with bounded
concurrency, robots.txt compliance and retry with exponential backoff.
"""

import asyncio
import logging
import random
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Set
from urllib.parse import urldefrag, urljoin, urlparse

import aiohttp
from bs4 import BeautifulSoup

from config.settings import CrawlerSettings
from .policy import RobotsPolicy, is_asset_url, is_html_content_type

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class FetchedPage:
    """Raw HTML of one crawled page, keyed by the URL it was served from."""
    url: str
    html: str


class WebCrawler:
    """Asynchronous same-host crawler returning at most ``max_pages`` pages."""

    def __init__(self,
                 user_agent: str = "docsearch/0.1",
                 max_concurrent: int = 8,
                 request_timeout: float = 30.0,
                 max_retries: int = 3,
                 retry_delay: float = 1.0,
                 max_retry_delay: float = 30.0,
                 respect_robots: bool = True,
                 block_assets: bool = True):
        """Initialize crawler.

        Args:
            user_agent: User agent string for every request
            max_concurrent: Maximum concurrent requests
            request_timeout: Request timeout in seconds
            max_retries: Maximum number of retry attempts
            retry_delay: Base delay between retries (seconds)
            max_retry_delay: Maximum delay between retries (seconds)
            respect_robots: Skip URLs disallowed by robots.txt
            block_assets: Never fetch images, styles, scripts and similar files
        """
        self.user_agent = user_agent
        self.max_concurrent = max_concurrent
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.respect_robots = respect_robots
        self.block_assets = block_assets

        self.session: Optional[aiohttp.ClientSession] = None
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.robots = RobotsPolicy(user_agent, timeout=request_timeout)

    @classmethod
    def from_settings(cls, settings: CrawlerSettings) -> 'WebCrawler':
        return cls(**settings.model_dump())

    async def __aenter__(self):
        """Async context manager entry."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def open(self):
        if self.session is None:
            connector = aiohttp.TCPConnector(limit=self.max_concurrent * 2)
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={'User-Agent': self.user_agent},
            )

    async def close(self):
        """Close the crawler session."""
        if self.session:
            await self.session.close()
            self.session = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay with jitter."""
        base_delay = self.retry_delay * (2 ** attempt)
        jitter = random.uniform(0.1, 0.3) * base_delay
        return min(base_delay + jitter, self.max_retry_delay)

    def _is_retryable_error(self, exception: Optional[Exception], status_code: Optional[int] = None) -> bool:
        """Determine if an error is retryable."""
        if status_code is not None and status_code in RETRYABLE_STATUS_CODES:
            return True

        if isinstance(exception, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
            return True

        # Connection problems are transient; other client errors are not
        return isinstance(exception, (aiohttp.ClientConnectionError, aiohttp.ServerDisconnectedError))

    async def _fetch_page(self, url: str) -> Optional[FetchedPage]:
        """Fetch one URL, retrying transient failures.

        Returns ``None`` for non-HTML responses, HTTP errors and requests that
        still fail after the last retry.
        """
        for attempt in range(self.max_retries + 1):
            retry = False
            try:
                async with self.semaphore:
                    logger.debug(f"Fetching {url} (attempt {attempt + 1}/{self.max_retries + 1})")
                    async with self.session.get(url, allow_redirects=True) as response:
                        if self._is_retryable_error(None, response.status) and attempt < self.max_retries:
                            logger.warning(
                                f"Retryable status {response.status} for {url}, "
                                f"attempt {attempt + 1}/{self.max_retries + 1}"
                            )
                            retry = True
                        elif response.status != 200:
                            logger.info(f"Skipping {url}: HTTP {response.status}")
                            return None
                        elif not is_html_content_type(response.headers.get('content-type', '')):
                            logger.debug(f"Skipping non-HTML response from {url}")
                            return None
                        else:
                            final_url, _ = urldefrag(str(response.url))
                            if final_url != url:
                                logger.debug(f"{url} redirected to {final_url}")
                            html = await response.text(errors="replace")
                            return FetchedPage(url=final_url, html=html)
            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                if attempt < self.max_retries and self._is_retryable_error(e):
                    retry = True
                    logger.warning(f"Error fetching {url}: {e!r}, attempt {attempt + 1}/{self.max_retries + 1}")
                else:
                    logger.warning(f"Giving up on {url} after {attempt + 1} attempts: {e!r}")
                    return None

            if retry:
                await asyncio.sleep(self._calculate_retry_delay(attempt))

        return None

    def _extract_links(self, content: str, base_url: str) -> Set[str]:
        """Extract absolute, fragment-free links from HTML content."""
        links = set()
        soup = BeautifulSoup(content, 'html.parser')
        for link in soup.find_all('a', href=True):
            href = link['href'].strip()
            if href:
                absolute_url, _ = urldefrag(urljoin(base_url, href))
                links.add(absolute_url)
        return links

    def _should_follow_link(self, url: str, base_domain: str) -> bool:
        """Check if a link should be followed."""
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or parsed.netloc != base_domain:
            return False
        return not (self.block_assets and is_asset_url(url))

    async def _allowed(self, url: str) -> bool:
        if not self.respect_robots:
            return True
        return await self.robots.can_fetch(self.session, url)

    async def _visit(self, url: str) -> Optional[FetchedPage]:
        if not await self._allowed(url):
            return None
        return await self._fetch_page(url)

    async def crawl(self, root_url: str, max_pages: int) -> List[FetchedPage]:
        """Crawl ``root_url`` breadth-first within its host.

        Args:
            root_url: Page the crawl starts from
            max_pages: Upper bound on the number of pages returned

        Returns:
            Fetched HTML pages in breadth-first discovery order. Redirected
            pages carry their final URL; a redirect leaving the host or
            landing on an already fetched page is dropped.
        """
        owns_session = self.session is None
        await self.open()

        base_domain = urlparse(root_url).netloc
        root, _ = urldefrag(root_url)
        frontier: Deque[str] = deque([root])
        seen: Set[str] = {root}
        fetched: Set[str] = set()
        pages: List[FetchedPage] = []

        logger.info(f"Starting crawl of {root_url} (max_pages={max_pages})")
        try:
            while frontier and len(pages) < max_pages:
                batch_size = min(self.max_concurrent, max_pages - len(pages), len(frontier))
                batch = [frontier.popleft() for _ in range(batch_size)]

                results = await asyncio.gather(*(self._visit(url) for url in batch))

                for requested, page in zip(batch, results):
                    if page is None or page.url in fetched:
                        continue
                    if page.url != requested and not self._should_follow_link(page.url, base_domain):
                        logger.info(f"Dropping {requested}: redirected outside the crawl to {page.url}")
                        continue
                    fetched.add(page.url)
                    seen.add(page.url)
                    if len(pages) < max_pages:
                        pages.append(page)
                    for link in sorted(self._extract_links(page.html, page.url)):
                        if link not in seen and self._should_follow_link(link, base_domain):
                            seen.add(link)
                            frontier.append(link)
        finally:
            if owns_session:
                await self.close()

        logger.info(f"Crawl of {root_url} finished: {len(pages)} pages, {len(seen)} URLs discovered")
        return pages
