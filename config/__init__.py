"""Configuration module for docsearch.

Provides typed settings for storage, embeddings, crawling, search and HTTP.
"""

from .settings import (
    BASE_DIR,
    CrawlerSettings,
    EmbedSource,
    Settings,
)

__all__ = [
    'BASE_DIR',
    'CrawlerSettings',
    'EmbedSource',
    'Settings',
]
