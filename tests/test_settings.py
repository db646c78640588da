"""Tests for environment-driven settings."""

import os

import pytest
from pydantic import ValidationError

from config.settings import EmbedSource, Settings


def test_defaults(monkeypatch):
    for key in list(os.environ):
        if key.startswith("DOCSEARCH_"):
            monkeypatch.delenv(key)

    settings = Settings.from_env()

    assert settings.port == 8080
    assert settings.candidate_limit == 20
    assert settings.result_limit == 10
    assert settings.embed_source is EmbedSource.TITLE
    assert settings.crawl_on_startup is True
    assert settings.crawler.respect_robots is True
    assert settings.crawler.block_assets is True


def test_from_env(monkeypatch):
    monkeypatch.setenv("DOCSEARCH_INDEX_PATH", "/tmp/idx.db")
    monkeypatch.setenv("DOCSEARCH_PORT", "9000")
    monkeypatch.setenv("DOCSEARCH_CRAWL_ON_STARTUP", "false")
    monkeypatch.setenv("DOCSEARCH_EMBED_SOURCE", "title_body")
    monkeypatch.setenv("DOCSEARCH_COMMIT_BATCH_SIZE", "1")
    monkeypatch.setenv("DOCSEARCH_CRAWLER_MAX_CONCURRENT", "2")
    monkeypatch.setenv("DOCSEARCH_CRAWLER_USER_AGENT", "test-agent")

    settings = Settings.from_env()

    assert settings.index_path == "/tmp/idx.db"
    assert settings.port == 9000
    assert settings.crawl_on_startup is False
    assert settings.embed_source is EmbedSource.TITLE_BODY
    assert settings.commit_batch_size == 1
    assert settings.crawler.max_concurrent == 2
    assert settings.crawler.user_agent == "test-agent"


@pytest.mark.parametrize("name, value", [
    ("DOCSEARCH_RESULT_LIMIT", "0"),
    ("DOCSEARCH_PORT", "70000"),
    ("DOCSEARCH_EMBED_SOURCE", "body_only"),
    ("DOCSEARCH_COMMIT_INTERVAL", "-1"),
])
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings.from_env()
