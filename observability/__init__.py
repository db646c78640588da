"""Observability package for docsearch."""

from .logging import setup_logging
from .metrics import (
    docsearch_registry,
    record_embedding_time,
    record_ingested_page,
    record_search_metrics,
    setup_prometheus_metrics,
)

__all__ = [
    'setup_logging',
    'docsearch_registry',
    'record_embedding_time',
    'record_ingested_page',
    'record_search_metrics',
    'setup_prometheus_metrics',
]
