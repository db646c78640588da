"""Sources package for docsearch.

Provides crawl target loading.
"""

from .loader import (
    CrawlTarget,
    InvalidUrlError,
    TargetConfigError,
    TargetLoader,
    UrlRule,
    load_targets,
    parse_page_url,
)

__all__ = [
    'CrawlTarget',
    'InvalidUrlError',
    'TargetConfigError',
    'TargetLoader',
    'UrlRule',
    'load_targets',
    'parse_page_url',
]
