"""Tests for the SQLite document store."""

import sqlite3

import numpy as np
import pytest

from indexer.codec import decode_embedding
from indexer.query_parser import parse_query
from indexer.store import Checkpoint, Document, DocumentStore, StoreError, StoreErrorCode


def make_document(url, title="Title", body="body text", dim=16, target="test"):
    embedding = np.zeros(dim, dtype=np.float32)
    embedding[0] = 1.0
    return Document(url=url, title=title, body=body, embedding=embedding, target=target)


class TestDocumentStore:

    def test_open_creates_schema(self, tmp_path):
        path = tmp_path / "nested" / "index.db"

        store = DocumentStore.open(str(path), 16)

        assert path.exists()
        assert store.count() == 0

    def test_reopen_with_same_dimension(self, tmp_path, store):
        reopened = DocumentStore.open(store.path, 16)
        assert reopened.count() == 0

    def test_reopen_with_other_dimension_fails(self, store):
        with pytest.raises(StoreError) as excinfo:
            DocumentStore.open(store.path, 384)
        assert excinfo.value.code == StoreErrorCode.DIMENSION_MISMATCH

    def test_schema_version_mismatch(self, store):
        conn = sqlite3.connect(store.path)
        conn.execute("UPDATE store_meta SET value = '99' WHERE key = 'schema_version'")
        conn.commit()
        conn.close()

        with pytest.raises(StoreError) as excinfo:
            DocumentStore.open(store.path, 16)
        assert excinfo.value.code == StoreErrorCode.SCHEMA_MISMATCH

    def test_foreign_database_is_rejected(self, tmp_path):
        path = tmp_path / "other.db"
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE documents (id TEXT PRIMARY KEY, content TEXT)")
        conn.commit()
        conn.close()

        with pytest.raises(StoreError) as excinfo:
            DocumentStore.open(str(path), 16)
        assert excinfo.value.code == StoreErrorCode.SCHEMA_MISMATCH

    def test_add_commit_and_fetch(self, store):
        with store.writer() as writer:
            doc_id = writer.add(make_document("https://example.org/a", body="alpha"))
            writer.commit()

        with store.read_session() as session:
            [stored] = session.fetch([doc_id])

        assert stored.url == "https://example.org/a"
        assert stored.body == "alpha"
        assert stored.target == "test"
        assert decode_embedding(stored.embedding, expected_dim=16)[0] == 1.0

    def test_writer_commits_pending_on_exit(self, store):
        with store.writer() as writer:
            writer.add(make_document("https://example.org/a"))

        assert store.count() == 1

    def test_writer_rolls_back_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.writer() as writer:
                writer.add(make_document("https://example.org/a"))
                raise RuntimeError("boom")

        assert store.count() == 0

    def test_second_writer_is_refused(self, store):
        with store.writer():
            with pytest.raises(StoreError) as excinfo:
                with store.writer():
                    pass
        assert excinfo.value.code == StoreErrorCode.WRITER_BUSY

        # The lock is released afterwards
        with store.writer() as writer:
            writer.add(make_document("https://example.org/a"))

    def test_dimension_is_enforced_on_add(self, store):
        with store.writer() as writer:
            with pytest.raises(StoreError) as excinfo:
                writer.add(make_document("https://example.org/a", dim=8))
        assert excinfo.value.code == StoreErrorCode.DIMENSION_MISMATCH

    def test_recrawl_appends(self, store):
        with store.writer() as writer:
            writer.add(make_document("https://example.org/a"))
        with store.writer() as writer:
            writer.add(make_document("https://example.org/a"))

        assert store.count() == 2

    def test_contains_url_sees_uncommitted_writes(self, store):
        with store.writer() as writer:
            assert not writer.contains_url("https://example.org/a")
            writer.add(make_document("https://example.org/a"))
            assert writer.contains_url("https://example.org/a")

    def test_read_session_is_a_snapshot(self, store):
        with store.writer() as writer:
            writer.add(make_document("https://example.org/a", body="snapshot words"))

        session = store.read_session()
        try:
            before = session.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            with store.writer() as writer:
                writer.add(make_document("https://example.org/b", body="snapshot words"))
            after = session.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
        finally:
            session.close()

        assert before == after == 1
        assert store.count() == 2

    def test_search_ranks_by_relevance(self, store):
        with store.writer() as writer:
            writer.add(make_document("https://example.org/dogs", title="Dogs", body="dogs are loyal companions"))
            writer.add(make_document("https://example.org/cats", title="Cats", body="cats are great pets, cats purr"))
            writer.add(make_document("https://example.org/misc", title="Misc", body="one cat among many words here"))

        with store.read_session() as session:
            hits = session.search(parse_query("cats"), limit=20)
            docs = session.fetch([doc_id for doc_id, _ in hits])

        assert [d.url for d in docs][0] == "https://example.org/cats"
        assert "https://example.org/dogs" not in [d.url for d in docs]
        scores = [score for _, score in hits]
        assert scores == sorted(scores, reverse=True)

    def test_search_respects_field_scope(self, store):
        with store.writer() as writer:
            writer.add(make_document("https://example.org/t", title="Iterators", body="nothing relevant"))
            writer.add(make_document("https://example.org/b", title="Other", body="iterators everywhere"))

        with store.read_session() as session:
            title_hits = session.search(parse_query("title:iterators"), limit=20)
            body_hits = session.search(parse_query("body:iterators"), limit=20)
            [title_doc] = session.fetch([i for i, _ in title_hits])
            [body_doc] = session.fetch([i for i, _ in body_hits])

        assert title_doc.url == "https://example.org/t"
        assert body_doc.url == "https://example.org/b"

    def test_search_limit(self, store):
        with store.writer() as writer:
            for i in range(30):
                writer.add(make_document(f"https://example.org/{i}", body=f"common term {i}"))

        with store.read_session() as session:
            assert len(session.search(parse_query("common"), limit=20)) == 20

    def test_empty_query_returns_nothing(self, store):
        with store.read_session() as session:
            assert session.search(parse_query("   "), limit=20) == []

    def test_fetch_missing_document(self, store):
        with store.read_session() as session:
            with pytest.raises(StoreError) as excinfo:
                session.fetch([12345])
        assert excinfo.value.code == StoreErrorCode.MISSING_DOCUMENT

    def test_fetch_preserves_order(self, store):
        with store.writer() as writer:
            ids = [writer.add(make_document(f"https://example.org/{i}")) for i in range(3)]

        with store.read_session() as session:
            docs = session.fetch(list(reversed(ids)))

        assert [d.id for d in docs] == list(reversed(ids))

    def test_snippets_are_highlighted_and_escaped(self, store):
        with store.writer() as writer:
            doc_id = writer.add(make_document(
                "https://example.org/a",
                body="Use <b>bold</b> & cats with care",
            ))

        query = parse_query("cats")
        with store.read_session() as session:
            snippets = session.snippets(query, [doc_id])

        assert snippets[doc_id] == "Use &lt;b&gt;bold&lt;/b&gt; &amp; <b>cats</b> with care"

    def test_counts_and_checkpoints(self, store):
        with store.writer() as writer:
            writer.add(make_document("https://a.org/1", target="a"))
            writer.add(make_document("https://a.org/2", target="a"))
            writer.add(make_document("https://b.org/1", target="b"))
            writer.commit(Checkpoint(target="a", last_url="https://a.org/2", documents=2))
            writer.commit(Checkpoint(target="a", last_url="https://a.org/3", documents=3))

        assert store.document_counts() == {"a": 2, "b": 1}
        [checkpoint] = store.checkpoints()
        assert checkpoint.target == "a"
        assert checkpoint.last_url == "https://a.org/3"
        assert checkpoint.documents == 3
        assert checkpoint.committed_at
