"""Crawl ingestion pipeline for docsearch.

Drives each crawl target through fetch, URL filtering, content extraction,
embedding and document writes. Pages are processed strictly one after
another and targets run one after another.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

from config.settings import EmbedSource, Settings
from indexer.embeddings import EmbeddingError
from indexer.store import Checkpoint, Document, DocumentStore, DocumentWriter
from observability.metrics import record_embedding_time, record_ingested_page
from sources.loader import CrawlTarget, InvalidUrlError, parse_page_url
from .crawler import FetchedPage, WebCrawler
from .extract import extract_content

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitPolicy:
    """When to commit pending documents.

    A commit happens once ``batch_size`` documents are pending or
    ``interval`` seconds have passed since the last commit, and always at the
    end of a target. ``batch_size=1`` commits every document on its own.
    """
    batch_size: int = 32
    interval: float = 5.0

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.interval <= 0:
            raise ValueError("interval must be positive")

    def due(self, pending: int, since_last_commit: float) -> bool:
        if pending == 0:
            return False
        return pending >= self.batch_size or since_last_commit >= self.interval


@dataclass
class IngestReport:
    """Outcome of ingesting one crawl target."""
    target: str
    fetched: int = 0
    indexed: int = 0
    skipped_invalid_url: int = 0
    skipped_excluded: int = 0
    skipped_empty: int = 0
    skipped_embedding_failed: int = 0
    skipped_duplicate: int = 0
    duration: float = 0.0
    last_url: Optional[str] = None

    @property
    def skipped(self) -> int:
        return (self.skipped_invalid_url + self.skipped_excluded + self.skipped_empty
                + self.skipped_embedding_failed + self.skipped_duplicate)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["skipped"] = self.skipped
        return data


class IngestionPipeline:
    """Reusable pipeline that indexes crawl targets into a document store."""

    def __init__(self,
                 store: DocumentStore,
                 embedder,
                 crawler: WebCrawler,
                 commit_policy: Optional[CommitPolicy] = None,
                 embed_source: EmbedSource = EmbedSource.TITLE,
                 skip_existing_urls: bool = False):
        """
        Args:
            store: Open document store; the pipeline takes its exclusive writer
            embedder: Object with ``aembed(text)`` returning a vector
            crawler: Fetch collaborator with ``crawl(root_url, max_pages)``
            commit_policy: Commit batching, defaults to :class:`CommitPolicy`
            embed_source: Text fed to the encoder for each page
            skip_existing_urls: Skip pages whose URL is already indexed
        """
        self.store = store
        self.embedder = embedder
        self.crawler = crawler
        self.commit_policy = commit_policy or CommitPolicy()
        self.embed_source = EmbedSource(embed_source)
        self.skip_existing_urls = skip_existing_urls

    @classmethod
    def from_settings(cls, settings: Settings, store: DocumentStore, embedder,
                      crawler: Optional[WebCrawler] = None) -> 'IngestionPipeline':
        return cls(
            store=store,
            embedder=embedder,
            crawler=crawler or WebCrawler.from_settings(settings.crawler),
            commit_policy=CommitPolicy(settings.commit_batch_size, settings.commit_interval),
            embed_source=settings.embed_source,
            skip_existing_urls=settings.skip_existing_urls,
        )

    def _embedding_text(self, title: str, body: str) -> str:
        if self.embed_source is EmbedSource.TITLE_BODY:
            return f"{title}\n{body}"
        return title

    async def ingest_all(self, targets: Sequence[CrawlTarget]) -> List[IngestReport]:
        """Ingest every target in order, one at a time."""
        reports = []
        for target in targets:
            reports.append(await self.ingest(target))
        return reports

    async def ingest(self, target: CrawlTarget) -> IngestReport:
        """Crawl one target and index its accepted pages.

        Raises:
            StoreError: on any write failure; documents committed before the
                failure stay indexed.
        """
        report = IngestReport(target=target.name)
        started = time.monotonic()
        logger.info(f"Ingesting target '{target.name}' from {target.root_url} (max_pages={target.max_pages})")

        pages = await self.crawler.crawl(target.root_url, target.max_pages)
        loop = asyncio.get_running_loop()

        with self.store.writer() as writer:
            last_commit = time.monotonic()
            for page in pages:
                if report.indexed >= target.max_pages:
                    break
                report.fetched += 1

                outcome = await self._process_page(page, target, writer, report)
                record_ingested_page(target.name, outcome)

                if self.commit_policy.due(writer.pending, time.monotonic() - last_commit):
                    await loop.run_in_executor(None, writer.commit, self._checkpoint(report))
                    last_commit = time.monotonic()

            if writer.pending:
                await loop.run_in_executor(None, writer.commit, self._checkpoint(report))

        report.duration = time.monotonic() - started
        logger.info(
            f"Target '{target.name}' done in {report.duration:.1f}s: "
            f"{report.indexed} indexed, {report.fetched} fetched, {report.skipped} skipped "
            f"(invalid_url={report.skipped_invalid_url}, excluded={report.skipped_excluded}, "
            f"empty={report.skipped_empty}, embedding_failed={report.skipped_embedding_failed}, "
            f"duplicate={report.skipped_duplicate})"
        )
        return report

    async def _process_page(self, page: FetchedPage, target: CrawlTarget,
                            writer: DocumentWriter, report: IngestReport) -> str:
        """Run one page through the pipeline and return its outcome label."""
        try:
            url = parse_page_url(page.url)
        except InvalidUrlError as e:
            logger.debug(f"Skipping page: {e}")
            report.skipped_invalid_url += 1
            return "invalid_url"

        if not target.include(url):
            logger.debug(f"Skipping {page.url}: excluded by target rule")
            report.skipped_excluded += 1
            return "excluded"

        loop = asyncio.get_running_loop()
        if self.skip_existing_urls and await loop.run_in_executor(None, writer.contains_url, page.url):
            logger.debug(f"Skipping {page.url}: already indexed")
            report.skipped_duplicate += 1
            return "duplicate"

        content = extract_content(page.html, page.url)
        if not content.body.strip():
            logger.debug(f"Skipping {page.url}: no extractable content")
            report.skipped_empty += 1
            return "empty"

        embed_started = time.monotonic()
        try:
            embedding = await self.embedder.aembed(self._embedding_text(content.title, content.body))
        except EmbeddingError as e:
            logger.warning(f"Skipping {page.url}: {e}")
            report.skipped_embedding_failed += 1
            return "embedding_failed"
        record_embedding_time("crawl", time.monotonic() - embed_started)

        document = Document(
            url=page.url,
            title=content.title,
            body=content.body,
            embedding=embedding,
            target=target.name,
        )
        await loop.run_in_executor(None, writer.add, document)
        report.indexed += 1
        report.last_url = page.url
        return "indexed"

    def _checkpoint(self, report: IngestReport) -> Checkpoint:
        return Checkpoint(target=report.target, last_url=report.last_url or "", documents=report.indexed)
