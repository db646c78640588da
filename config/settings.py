"""Application settings for docsearch.

Settings are plain pydantic models populated from ``DOCSEARCH_*`` environment
variables, with defaults suitable for a local single-process deployment.
"""

import os
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[1]

ENV_PREFIX = "DOCSEARCH_"


class EmbedSource(str, Enum):
    """Which part of a page is fed to the encoder at crawl time."""
    TITLE = "title"
    TITLE_BODY = "title_body"


class CrawlerSettings(BaseModel):
    """Fetch collaborator settings."""
    user_agent: str = Field(default="docsearch/0.1", description="User agent for page and robots.txt requests")
    max_concurrent: int = Field(default=8, ge=1, description="Maximum concurrent page fetches")
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    max_retries: int = Field(default=3, ge=0, description="Retries for transient fetch failures")
    retry_delay: float = Field(default=1.0, ge=0, description="Base backoff delay in seconds")
    max_retry_delay: float = Field(default=30.0, ge=0, description="Backoff ceiling in seconds")
    respect_robots: bool = Field(default=True, description="Honour robots.txt")
    block_assets: bool = Field(default=True, description="Never fetch images, scripts, styles and other assets")


class Settings(BaseModel):
    """docsearch configuration."""

    # Storage
    index_path: str = Field(default=str(BASE_DIR / "data" / "docsearch.db"), description="SQLite index path")

    # Embeddings
    embedding_model: str = Field(
        default=str(BASE_DIR / "models" / "all-MiniLM-L6-v2"),
        description="Path (or hub name when local_files_only is off) of the sentence-transformers model",
    )
    embedding_device: str = Field(default="cpu", description="Torch device for inference")
    local_files_only: bool = Field(default=True, description="Refuse to download model artifacts")
    embed_source: EmbedSource = Field(default=EmbedSource.TITLE, description="Text embedded for each page")

    # Crawling
    targets_path: str = Field(default=str(BASE_DIR / "sources" / "targets.yaml"), description="Crawl target YAML")
    crawl_on_startup: bool = Field(default=True, description="Run every crawl target before serving")
    commit_batch_size: int = Field(default=32, ge=1, description="Documents per write transaction")
    commit_interval: float = Field(default=5.0, gt=0, description="Maximum seconds between commits")
    skip_existing_urls: bool = Field(default=False, description="Skip pages whose URL is already indexed")
    crawler: CrawlerSettings = Field(default_factory=CrawlerSettings)

    # Search
    candidate_limit: int = Field(default=20, ge=1, description="Lexical candidates reranked per query")
    result_limit: int = Field(default=10, ge=1, description="Results returned per query")

    # HTTP
    templates_dir: str = Field(default=str(BASE_DIR / "server" / "templates"), description="Jinja2 template directory")
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON logs on the console")
    log_file: Optional[str] = Field(default=None, description="Optional JSON log file")

    @classmethod
    def from_env(cls) -> 'Settings':
        """Create settings from environment variables."""
        values = {}
        for name, field in cls.model_fields.items():
            if name == "crawler":
                continue
            raw = os.getenv(ENV_PREFIX + name.upper())
            if raw is not None:
                values[name] = raw

        crawler_values = {}
        for name in CrawlerSettings.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}CRAWLER_{name.upper()}")
            if raw is not None:
                crawler_values[name] = raw
        values["crawler"] = CrawlerSettings(**crawler_values)

        settings = cls(**values)
        logger.debug(f"Settings loaded from environment: index={settings.index_path}")
        return settings
