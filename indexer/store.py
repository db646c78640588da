"""SQLite document store for docsearch.

Documents live in a plain table with their encoded embedding; an FTS5 index
over ``title`` and ``body`` is kept in sync by triggers and serves lexical
retrieval, BM25 ranking and snippet generation.

There is one exclusive writer, used during ingestion, and any number of read
sessions. The database runs in WAL mode, so each read session sees a
consistent point-in-time snapshot without blocking the writer.
"""

import html
import sqlite3
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .codec import CODEC_NAME, encode_embedding
from .query_parser import ParsedQuery

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"
SCHEMA_VERSION = 1

_MARK_START = "\x02"
_MARK_END = "\x03"


class StoreErrorCode(str, Enum):
    """Closed set of document store failures."""
    OPEN_FAILED = "open_failed"
    SCHEMA_MISMATCH = "schema_mismatch"
    DIMENSION_MISMATCH = "dimension_mismatch"
    WRITER_BUSY = "writer_busy"
    WRITE_FAILED = "write_failed"
    READ_FAILED = "read_failed"
    MISSING_DOCUMENT = "missing_document"


class StoreError(RuntimeError):
    """Document store failure."""

    def __init__(self, code: StoreErrorCode, message: str):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class Document:
    """A crawled page ready to be written."""
    url: str
    title: str
    body: str
    embedding: np.ndarray
    target: str = ""


@dataclass(frozen=True)
class StoredDocument:
    """A document as read back from the index, embedding still encoded."""
    id: int
    url: str
    title: str
    body: str
    embedding: bytes
    target: str


@dataclass(frozen=True)
class Checkpoint:
    """Last committed page of a crawl target."""
    target: str
    last_url: str
    documents: int
    committed_at: str = ""


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _render_snippet(raw: str) -> str:
    """Escape a marked snippet and turn the markers into <b> tags."""
    escaped = html.escape(raw, quote=False)
    return escaped.replace(_MARK_START, "<b>").replace(_MARK_END, "</b>")


class DocumentWriter:
    """Exclusive writer; obtain through :meth:`DocumentStore.writer`."""

    def __init__(self, conn: sqlite3.Connection, dimension: int):
        self._conn = conn
        self._dimension = dimension
        self.pending = 0

    def add(self, document: Document) -> int:
        """Insert a document into the current transaction and return its id."""
        embedding = np.asarray(document.embedding)
        if embedding.shape != (self._dimension,):
            raise StoreError(
                StoreErrorCode.DIMENSION_MISMATCH,
                f"Embedding shape {embedding.shape} does not match index dimension {self._dimension}",
            )

        try:
            cursor = self._conn.execute(
                """
                INSERT INTO documents (url, title, body, embedding, target, indexed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    document.url,
                    document.title,
                    document.body,
                    encode_embedding(embedding.astype(np.float32, copy=False)),
                    document.target,
                    _utcnow(),
                ),
            )
        except sqlite3.Error as e:
            raise StoreError(StoreErrorCode.WRITE_FAILED, f"Failed to add {document.url}: {e}") from e

        self.pending += 1
        return cursor.lastrowid

    def contains_url(self, url: str) -> bool:
        """Whether a document with this URL exists (including uncommitted writes)."""
        try:
            row = self._conn.execute("SELECT 1 FROM documents WHERE url = ? LIMIT 1", (url,)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(StoreErrorCode.READ_FAILED, f"URL lookup failed: {e}") from e
        return row is not None

    def commit(self, checkpoint: Optional[Checkpoint] = None) -> None:
        """Commit pending documents, recording ``checkpoint`` in the same transaction."""
        try:
            if checkpoint is not None:
                self._conn.execute(
                    """
                    INSERT INTO crawl_checkpoints (target, last_url, documents, committed_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(target) DO UPDATE SET
                        last_url = excluded.last_url,
                        documents = excluded.documents,
                        committed_at = excluded.committed_at
                    """,
                    (checkpoint.target, checkpoint.last_url, checkpoint.documents, _utcnow()),
                )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(StoreErrorCode.WRITE_FAILED, f"Commit failed: {e}") from e

        logger.debug(f"Committed {self.pending} documents")
        self.pending = 0

    def rollback(self) -> None:
        try:
            self._conn.rollback()
        except sqlite3.Error as e:
            logger.error(f"Rollback failed: {e}")
        self.pending = 0


class ReadSession:
    """A point-in-time snapshot of the index for a single query.

    The session may be used from different threads, one at a time.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._conn.execute("BEGIN")

    def __enter__(self) -> 'ReadSession':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            logger.warning(f"Failed to end read transaction: {e}")
        finally:
            self._conn.close()

    def execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreError(StoreErrorCode.READ_FAILED, f"Query failed: {e}") from e

    def search(self, query: ParsedQuery, limit: int) -> List[Tuple[int, float]]:
        """Top ``limit`` ``(document_id, score)`` pairs, best first.

        Scores are negated BM25 values, so higher is more relevant.
        """
        if query.is_empty:
            return []
        try:
            rows = self._conn.execute(
                """
                SELECT rowid, bm25(documents_fts) AS score
                FROM documents_fts
                WHERE documents_fts MATCH ?
                ORDER BY score
                LIMIT ?
                """,
                (query.expression, limit),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(StoreErrorCode.READ_FAILED, f"Lexical search failed: {e}") from e
        return [(row[0], -row[1]) for row in rows]

    def fetch(self, ids: Sequence[int]) -> List[StoredDocument]:
        """Fetch documents in the order of ``ids``."""
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        try:
            rows = self._conn.execute(
                f"SELECT id, url, title, body, embedding, target FROM documents WHERE id IN ({placeholders})",
                list(ids),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(StoreErrorCode.READ_FAILED, f"Document fetch failed: {e}") from e

        by_id = {row["id"]: row for row in rows}
        documents = []
        for doc_id in ids:
            row = by_id.get(doc_id)
            if row is None:
                raise StoreError(StoreErrorCode.MISSING_DOCUMENT, f"Document {doc_id} not found")
            documents.append(StoredDocument(
                id=row["id"],
                url=row["url"],
                title=row["title"],
                body=row["body"],
                embedding=row["embedding"],
                target=row["target"],
            ))
        return documents

    def snippets(self, query: ParsedQuery, ids: Sequence[int], tokens: int = 24) -> Dict[int, str]:
        """HTML-safe, query-highlighted excerpts of ``body`` keyed by document id."""
        if not ids or query.is_empty:
            return {}
        placeholders = ",".join("?" * len(ids))
        try:
            rows = self._conn.execute(
                f"""
                SELECT rowid, snippet(documents_fts, 1, char(2), char(3), '…', {int(tokens)})
                FROM documents_fts
                WHERE documents_fts MATCH ? AND rowid IN ({placeholders})
                """,
                [query.expression, *ids],
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(StoreErrorCode.READ_FAILED, f"Snippet generation failed: {e}") from e
        return {row[0]: _render_snippet(row[1] or "") for row in rows}


class DocumentStore:
    """SQLite + FTS5 document store."""

    def __init__(self, path: str, dimension: int):
        self.path = str(path)
        self.dimension = dimension
        self._writer_lock = threading.Lock()

    @classmethod
    def open(cls, path: str, dimension: int) -> 'DocumentStore':
        """Open the index, creating it if missing, and validate its schema."""
        store = cls(path, dimension)
        store.initialize()
        return store

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> None:
        """Ensure schema exists and matches this process's expectations.

        Raises:
            StoreError: if the index cannot be opened or was built with a
                different schema version or embedding dimension.
        """
        try:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
        except (OSError, sqlite3.Error) as e:
            raise StoreError(StoreErrorCode.OPEN_FAILED, f"Cannot open index {self.path}: {e}") from e

        try:
            tables = {
                row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
            if "documents" in tables and "store_meta" not in tables:
                raise StoreError(
                    StoreErrorCode.SCHEMA_MISMATCH,
                    f"{self.path} holds a documents table without docsearch metadata",
                )

            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))

            meta = {row["key"]: row["value"] for row in conn.execute("SELECT key, value FROM store_meta")}
            expected = {
                "schema_version": str(SCHEMA_VERSION),
                "embedding_dimension": str(self.dimension),
                "embedding_codec": CODEC_NAME,
            }
            if not meta:
                conn.executemany("INSERT INTO store_meta (key, value) VALUES (?, ?)", expected.items())
                conn.commit()
                logger.warning(f"No existing index found, created {self.path}")
            else:
                self._check_meta(meta, expected)
        except sqlite3.Error as e:
            raise StoreError(StoreErrorCode.OPEN_FAILED, f"Failed to initialize index {self.path}: {e}") from e
        finally:
            conn.close()

        logger.info(f"Document store ready: {self.path} (dimension={self.dimension})")

    def _check_meta(self, meta: Dict[str, str], expected: Dict[str, str]) -> None:
        if meta.get("embedding_dimension") != expected["embedding_dimension"]:
            raise StoreError(
                StoreErrorCode.DIMENSION_MISMATCH,
                f"Index dimension {meta.get('embedding_dimension')} != model dimension {self.dimension}",
            )
        for key in ("schema_version", "embedding_codec"):
            if meta.get(key) != expected[key]:
                raise StoreError(
                    StoreErrorCode.SCHEMA_MISMATCH,
                    f"Index {key} is {meta.get(key)!r}, expected {expected[key]!r}",
                )

    @contextmanager
    def writer(self) -> Iterator[DocumentWriter]:
        """Exclusive writer. Pending documents are committed on clean exit
        and rolled back if the block raises."""
        if not self._writer_lock.acquire(blocking=False):
            raise StoreError(StoreErrorCode.WRITER_BUSY, "Another writer is open")
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            self._writer_lock.release()
            raise StoreError(StoreErrorCode.OPEN_FAILED, f"Cannot open writer: {e}") from e

        writer = DocumentWriter(conn, self.dimension)
        try:
            yield writer
            if writer.pending:
                writer.commit()
        except BaseException:
            writer.rollback()
            raise
        finally:
            conn.close()
            self._writer_lock.release()

    def read_session(self) -> ReadSession:
        """Open a snapshot for one query."""
        try:
            conn = self._connect()
            conn.isolation_level = None
            return ReadSession(conn)
        except sqlite3.Error as e:
            raise StoreError(StoreErrorCode.OPEN_FAILED, f"Cannot open read session: {e}") from e

    def count(self) -> int:
        """Total number of stored documents."""
        with self.read_session() as session:
            return session.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

    def document_counts(self) -> Dict[str, int]:
        """Stored documents per crawl target."""
        with self.read_session() as session:
            rows = session.execute(
                "SELECT target, COUNT(*) AS n FROM documents GROUP BY target ORDER BY target"
            ).fetchall()
        return {row["target"]: row["n"] for row in rows}

    def checkpoints(self) -> List[Checkpoint]:
        """Checkpoint record of every crawl target."""
        with self.read_session() as session:
            rows = session.execute(
                "SELECT target, last_url, documents, committed_at FROM crawl_checkpoints ORDER BY target"
            ).fetchall()
        return [
            Checkpoint(target=r["target"], last_url=r["last_url"], documents=r["documents"],
                       committed_at=r["committed_at"])
            for r in rows
        ]
