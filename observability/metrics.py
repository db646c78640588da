"""Prometheus metrics for docsearch."""

import re
import time
import logging
from typing import Optional

from fastapi import FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Custom registry so tests and multiple apps in one process stay isolated
docsearch_registry = CollectorRegistry()

# Request metrics
request_count = Counter(
    'docsearch_http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=docsearch_registry
)

request_duration = Histogram(
    'docsearch_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=docsearch_registry
)

# Search metrics
search_requests = Counter(
    'docsearch_search_requests_total',
    'Total number of search requests',
    ['status'],
    registry=docsearch_registry
)

search_stage_duration = Histogram(
    'docsearch_search_stage_duration_seconds',
    'Duration of each query pipeline stage in seconds',
    ['stage'],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
    registry=docsearch_registry
)

search_results_count = Histogram(
    'docsearch_search_results_count',
    'Number of search results returned',
    buckets=[0, 1, 2, 5, 10, 20],
    registry=docsearch_registry
)

embedding_duration = Histogram(
    'docsearch_embedding_duration_seconds',
    'Embedding generation duration in seconds',
    ['phase'],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
    registry=docsearch_registry
)

# Ingestion metrics
ingested_pages = Counter(
    'docsearch_ingested_pages_total',
    'Crawled pages by target and outcome',
    ['target', 'outcome'],
    registry=docsearch_registry
)


class PrometheusMiddleware:
    """Middleware to collect Prometheus metrics for HTTP requests."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        method = request.method
        endpoint = self._normalize_endpoint(request.url.path)

        start_time = time.time()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            request_count.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
            request_duration.labels(method=method, endpoint=endpoint).observe(time.time() - start_time)

    def _normalize_endpoint(self, path: str) -> str:
        """Normalize endpoint path to reduce cardinality."""
        return re.sub(r'/\d+', '/{id}', path)


def setup_prometheus_metrics(app: FastAPI) -> None:
    """Add the request middleware and the ``/metrics`` endpoint."""
    app.add_middleware(PrometheusMiddleware)

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint():
        """Prometheus metrics endpoint."""
        return Response(generate_latest(docsearch_registry), media_type=CONTENT_TYPE_LATEST)

    logger.info("Prometheus metrics configured")


def record_search_metrics(status: str, result_count: Optional[int] = None, **stage_seconds: float) -> None:
    """Record one search request and the duration of each stage it ran."""
    search_requests.labels(status=status).inc()
    for stage, seconds in stage_seconds.items():
        search_stage_duration.labels(stage=stage).observe(seconds)
    if result_count is not None:
        search_results_count.observe(result_count)


def record_embedding_time(phase: str, seconds: float) -> None:
    embedding_duration.labels(phase=phase).observe(seconds)


def record_ingested_page(target: str, outcome: str) -> None:
    ingested_pages.labels(target=target, outcome=outcome).inc()
