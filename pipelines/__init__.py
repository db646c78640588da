"""Pipelines package for docsearch.

Provides crawling, robots.txt policy checks, content extraction and crawl
ingestion.
"""

from .crawler import FetchedPage, WebCrawler
from .extract import ExtractedContent, extract_content
from .ingest import CommitPolicy, IngestionPipeline, IngestReport
from .policy import RobotsPolicy, is_asset_url

__all__ = [
    # Crawler
    'FetchedPage',
    'WebCrawler',

    # Policy
    'RobotsPolicy',
    'is_asset_url',

    # Extraction
    'ExtractedContent',
    'extract_content',

    # Ingestion
    'CommitPolicy',
    'IngestionPipeline',
    'IngestReport',
]
