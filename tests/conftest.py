"""Shared fixtures: a deterministic embedder and temporary document stores."""

import pytest

from indexer.store import Document, DocumentStore
from .fakes import FakeEmbedder


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store(tmp_path):
    return DocumentStore.open(str(tmp_path / "index.db"), FakeEmbedder.dimension)


@pytest.fixture
def add_documents(store, embedder):
    """Write ``(url, title, body)`` triples, embedding the body, and commit."""
    def _add(*rows, target="test"):
        with store.writer() as writer:
            for url, title, body in rows:
                writer.add(Document(url=url, title=title, body=body,
                                    embedding=embedder.embed(body), target=target))
    return _add
