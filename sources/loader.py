"""Crawl target loader for docsearch.

Loads and validates per-site crawl targets (root URL, URL inclusion rule and
page cap) from a YAML file.
"""

import re
import yaml
from pathlib import Path
from typing import Dict, List, Any, Optional, Pattern, Tuple
from dataclasses import dataclass, field
from urllib.parse import SplitResult, urlsplit
import logging

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 10_000


class TargetConfigError(ValueError):
    """Raised when the crawl target file is missing or invalid."""


class InvalidUrlError(ValueError):
    """Raised when a page URL cannot be parsed into an absolute http(s) URL."""


def parse_page_url(raw: str) -> SplitResult:
    """Parse a crawled page URL.

    Raises:
        InvalidUrlError: if the URL is malformed or not absolute http(s).
    """
    try:
        url = urlsplit(raw.strip())
        # Accessing the port validates it
        url.port
    except (ValueError, AttributeError) as e:
        raise InvalidUrlError(f"Malformed URL {raw!r}: {e}") from e

    if url.scheme not in ("http", "https") or not url.hostname:
        raise InvalidUrlError(f"Not an absolute http(s) URL: {raw!r}")
    return url


@dataclass(frozen=True)
class UrlRule:
    """Declarative URL inclusion predicate.

    A URL is included when its path starts with one of ``path_prefixes`` (or
    the list is empty), its path ends with none of ``exclude_path_suffixes``,
    and the full URL matches none of ``exclude_patterns``.
    """
    path_prefixes: Tuple[str, ...] = ()
    exclude_path_suffixes: Tuple[str, ...] = ()
    exclude_patterns: Tuple[Pattern, ...] = field(default=(), compare=False)

    def __call__(self, url: SplitResult) -> bool:
        path = url.path or "/"
        if self.path_prefixes and not path.startswith(self.path_prefixes):
            return False
        if self.exclude_path_suffixes and path.endswith(self.exclude_path_suffixes):
            return False
        full = url.geturl()
        return not any(p.search(full) for p in self.exclude_patterns)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'UrlRule':
        data = data or {}
        try:
            patterns = tuple(re.compile(p) for p in data.get('exclude_patterns', []))
        except re.error as e:
            raise TargetConfigError(f"Invalid exclude pattern: {e}") from e
        return cls(
            path_prefixes=tuple(data.get('path_prefixes', [])),
            exclude_path_suffixes=tuple(data.get('exclude_path_suffixes', [])),
            exclude_patterns=patterns,
        )


@dataclass(frozen=True)
class CrawlTarget:
    """One site to crawl: root URL, inclusion predicate and page cap."""
    name: str
    root_url: str
    include: UrlRule = field(default_factory=UrlRule)
    max_pages: int = DEFAULT_MAX_PAGES

    def __post_init__(self):
        if not self.name:
            raise TargetConfigError("Target name cannot be empty")
        if not self.root_url:
            raise TargetConfigError(f"Target {self.name!r} has no root_url")
        if self.max_pages <= 0:
            raise TargetConfigError(f"Target {self.name!r}: max_pages must be positive")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CrawlTarget':
        """Create a CrawlTarget from a YAML mapping."""
        try:
            return cls(
                name=data['name'],
                root_url=data['root_url'],
                include=UrlRule.from_dict(data.get('include')),
                max_pages=int(data.get('max_pages', DEFAULT_MAX_PAGES)),
            )
        except KeyError as e:
            raise TargetConfigError(f"Crawl target missing required key {e}") from e


class TargetLoader:
    """Loads crawl targets from a YAML file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> List[CrawlTarget]:
        """Load every target, in file order.

        Raises:
            TargetConfigError: if the file is missing, unparsable or invalid.
        """
        if not self.path.exists():
            raise TargetConfigError(f"Crawl target file not found: {self.path}")

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise TargetConfigError(f"Failed to parse {self.path}: {e}") from e

        entries = data.get('targets') if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise TargetConfigError(f"{self.path} must contain a 'targets' list")

        targets = [CrawlTarget.from_dict(entry) for entry in entries]

        names = [t.name for t in targets]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise TargetConfigError(f"Duplicate target names: {sorted(duplicates)}")

        logger.info(f"Loaded {len(targets)} crawl targets from {self.path}")
        return targets


def load_targets(path: Path) -> List[CrawlTarget]:
    """Convenience function to load crawl targets."""
    return TargetLoader(path).load()
