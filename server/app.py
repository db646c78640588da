"""FastAPI application for docsearch.

Startup loads the encoder, opens the index, checks the page template, crawls
every configured target one after another and freezes the crawl statistics.
Serving begins only once all of that has succeeded.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from config.settings import Settings
from indexer.embeddings import EmbeddingService, ModelLoadError
from indexer.store import DocumentStore, StoreError
from observability.metrics import setup_prometheus_metrics
from pipelines.crawler import WebCrawler
from pipelines.ingest import IngestionPipeline
from sources.loader import CrawlTarget, TargetConfigError, load_targets
from .errors import SearchError, StartupError
from .search import HybridQueryProcessor
from .stats import CrawlStats

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "index.html"


@dataclass
class AppState:
    """Components shared by every request."""
    store: DocumentStore
    embedder: object
    processor: HybridQueryProcessor
    stats: CrawlStats
    templates: Jinja2Templates


def load_embedder(settings: Settings) -> EmbeddingService:
    try:
        return EmbeddingService(
            settings.embedding_model,
            device=settings.embedding_device,
            local_files_only=settings.local_files_only,
        )
    except ModelLoadError as e:
        raise StartupError(str(e)) from e


def open_store(settings: Settings, dimension: int) -> DocumentStore:
    try:
        return DocumentStore.open(settings.index_path, dimension)
    except StoreError as e:
        raise StartupError(f"{e.code.value}: {e}") from e


def load_templates(settings: Settings) -> Jinja2Templates:
    template_path = Path(settings.templates_dir) / TEMPLATE_NAME
    if not template_path.is_file():
        raise StartupError(f"Template not found: {template_path}")
    return Jinja2Templates(directory=settings.templates_dir)


async def run_ingestion(settings: Settings,
                        store: DocumentStore,
                        embedder,
                        targets: Optional[Sequence[CrawlTarget]] = None,
                        crawler: Optional[WebCrawler] = None) -> CrawlStats:
    """Crawl every target into ``store`` and return the frozen tally."""
    if targets is None:
        try:
            targets = load_targets(Path(settings.targets_path))
        except TargetConfigError as e:
            raise StartupError(str(e)) from e

    pipeline = IngestionPipeline.from_settings(settings, store, embedder, crawler=crawler)
    try:
        reports = await pipeline.ingest_all(targets)
    except StoreError as e:
        raise StartupError(f"Ingestion aborted, {e.code.value}: {e}") from e

    stats = CrawlStats.from_reports(reports)
    logger.info(f"Ingestion finished: {stats.total} documents across {len(reports)} targets")
    return stats


def _render(state: AppState, request: Request, query: Optional[str], results: Sequence = (),
            timing: Optional[str] = None, error: Optional[str] = None, status_code: int = 200) -> HTMLResponse:
    return state.templates.TemplateResponse(
        request,
        TEMPLATE_NAME,
        {
            "query": query or "",
            "results": results,
            "timing": timing,
            "error": error,
            "stats": state.stats,
        },
        status_code=status_code,
    )


def create_app(settings: Optional[Settings] = None,
               *,
               store: Optional[DocumentStore] = None,
               embedder=None,
               targets: Optional[Sequence[CrawlTarget]] = None,
               crawler: Optional[WebCrawler] = None) -> FastAPI:
    """Build the application; components passed in replace the ones built from settings."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        model = embedder or load_embedder(settings)
        index = store or open_store(settings, model.dimension)
        templates = load_templates(settings)

        if settings.crawl_on_startup:
            stats = await run_ingestion(settings, index, model, targets=targets, crawler=crawler)
        else:
            logger.info("Startup crawl disabled, serving existing index")
            stats = CrawlStats.from_counts(index.document_counts(), index.checkpoints())

        app.state.docsearch = AppState(
            store=index,
            embedder=model,
            processor=HybridQueryProcessor(
                index,
                model,
                candidate_limit=settings.candidate_limit,
                result_limit=settings.result_limit,
            ),
            stats=stats,
            templates=templates,
        )
        logger.info(f"docsearch ready with {stats.total} documents")
        yield
        logger.info("docsearch shutting down")

    app = FastAPI(title="docsearch", version="0.1.0", lifespan=lifespan)
    setup_prometheus_metrics(app)

    @app.exception_handler(SearchError)
    async def search_error_handler(request: Request, exc: SearchError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/", response_class=HTMLResponse)
    async def search_page(request: Request, q: Optional[str] = None):
        """Search page."""
        state: AppState = request.app.state.docsearch
        try:
            response = await state.processor.search(q)
        except SearchError as e:
            return _render(state, request, q, error=e.message, status_code=e.status_code)

        timing = response.timings.describe() if response.timings else None
        return _render(state, request, q, results=response.results, timing=timing)

    @app.get("/api/search")
    async def api_search(request: Request, q: Optional[str] = None):
        """Search results as JSON."""
        state: AppState = request.app.state.docsearch
        response = await state.processor.search(q)
        return response.as_dict()

    @app.get("/stats")
    async def crawl_stats(request: Request):
        """Documents indexed per crawl target during startup."""
        return request.app.state.docsearch.stats.as_dict()

    @app.get("/health")
    async def health(request: Request):
        state: AppState = request.app.state.docsearch
        try:
            documents = await asyncio.get_running_loop().run_in_executor(None, state.store.count)
        except StoreError as e:
            return JSONResponse(status_code=503, content={"ok": False, "error": e.code.value})
        return {"ok": True, "documents": documents, "time": datetime.now(timezone.utc).isoformat()}

    return app
