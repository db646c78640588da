"""Hybrid query processing: lexical retrieval plus semantic rerank.

Each query is parsed, then two units of work run concurrently: the lexical
branch (BM25 top-K, document fetch and embedding decode inside one index
snapshot) and the embedding branch (the query vector). Both are joined before
the candidates are reordered by cosine similarity.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from indexer.codec import EmbeddingCodecError, decode_embedding
from indexer.embeddings import EmbeddingError
from indexer.query_parser import ParsedQuery, QuerySyntaxError, parse_query
from indexer.similarity import rerank
from indexer.store import DocumentStore, ReadSession, StoredDocument, StoreError, StoreErrorCode
from observability.metrics import record_embedding_time, record_search_metrics
from .errors import ErrorCode, SearchError

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_LIMIT = 20
DEFAULT_RESULT_LIMIT = 10


@dataclass
class StageTimings:
    """Seconds spent in each stage of one query."""
    parse: float = 0.0
    search: float = 0.0
    fetch: float = 0.0
    embedding: float = 0.0
    rerank: float = 0.0
    snippet: float = 0.0
    total: float = 0.0

    def describe(self) -> str:
        """One-line breakdown in milliseconds, e.g. for the results page."""
        stages = " + ".join(
            f"{name} {getattr(self, name) * 1000:.2f}ms"
            for name in ("parse", "search", "fetch", "embedding", "rerank", "snippet")
        )
        return f"{self.total * 1000:.2f}ms = {stages}"

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Candidate:
    """A lexical match with its decoded embedding."""
    document: StoredDocument
    lexical_score: float
    lexical_rank: int
    embedding: np.ndarray


@dataclass(frozen=True)
class SearchResult:
    url: str
    title: str
    snippet: str


@dataclass
class SearchResponse:
    query: Optional[str]
    results: List[SearchResult] = field(default_factory=list)
    timings: Optional[StageTimings] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "results": [asdict(r) for r in self.results],
            "timings": self.timings.as_dict() if self.timings else None,
        }


def _translate(error: BaseException) -> Optional[SearchError]:
    """Map a component failure onto :class:`SearchError`, or None if it is not one."""
    if isinstance(error, QuerySyntaxError):
        return SearchError(ErrorCode.INVALID_QUERY, str(error))
    if isinstance(error, EmbeddingCodecError):
        return SearchError(ErrorCode.CORRUPT_DOCUMENT, f"Stored embedding is corrupt: {error}")
    if isinstance(error, EmbeddingError):
        return SearchError(ErrorCode.EMBEDDING_FAILED, str(error))
    if isinstance(error, StoreError):
        if error.code == StoreErrorCode.MISSING_DOCUMENT:
            return SearchError(ErrorCode.CORRUPT_DOCUMENT, str(error))
        return SearchError(ErrorCode.INDEX_UNAVAILABLE, str(error))
    return None


class HybridQueryProcessor:
    """Serves queries against a document store with semantic reranking."""

    def __init__(self, store: DocumentStore, embedder,
                 candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
                 result_limit: int = DEFAULT_RESULT_LIMIT):
        """
        Args:
            store: Document store to open read snapshots on
            embedder: Object with ``dimension`` and ``aembed(text)``
            candidate_limit: Lexical candidates retrieved per query (K)
            result_limit: Results returned after rerank (N)
        """
        self.store = store
        self.embedder = embedder
        self.candidate_limit = candidate_limit
        self.result_limit = result_limit

    async def search(self, query: Optional[str]) -> SearchResponse:
        """Run one query.

        An absent or blank query, or one without searchable words, returns an
        empty response without touching the index.

        Raises:
            SearchError: if the query is malformed or a component fails.
        """
        if query is None or not query.strip():
            return SearchResponse(query=query)

        try:
            return await self._search(query)
        except SearchError as e:
            logger.warning(f"Search for {query!r} failed: {e.code.value}: {e.message}")
            record_search_metrics(e.code.value)
            raise

    async def _search(self, query: str) -> SearchResponse:
        timings = StageTimings()
        started = time.perf_counter()

        try:
            parsed = parse_query(query)
        except QuerySyntaxError as e:
            raise _translate(e) from e
        timings.parse = time.perf_counter() - started

        if parsed.is_empty:
            timings.total = time.perf_counter() - started
            return SearchResponse(query=query, timings=timings)

        try:
            session = self.store.read_session()
        except StoreError as e:
            raise _translate(e) from e

        loop = asyncio.get_running_loop()
        try:
            outcomes = await asyncio.gather(
                loop.run_in_executor(None, self._lexical_branch, session, parsed, timings),
                self._embedding_branch(query, timings),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    translated = _translate(outcome)
                    if translated is None:
                        raise outcome
                    raise translated from outcome
            candidates, query_embedding = outcomes

            stage = time.perf_counter()
            ranked = rerank(candidates, query_embedding, lambda c: c.embedding, self.result_limit)
            timings.rerank = time.perf_counter() - stage

            stage = time.perf_counter()
            ids = [candidate.document.id for candidate, _ in ranked]
            try:
                snippets = await loop.run_in_executor(None, session.snippets, parsed, ids)
            except StoreError as e:
                raise _translate(e) from e
            timings.snippet = time.perf_counter() - stage
        finally:
            session.close()

        results = [
            SearchResult(
                url=candidate.document.url,
                title=candidate.document.title,
                snippet=snippets.get(candidate.document.id, ""),
            )
            for candidate, _ in ranked
        ]
        timings.total = time.perf_counter() - started

        logger.info(f"Search {query!r}: {len(results)} results from {len(candidates)} candidates in {timings.describe()}")
        record_search_metrics(
            "ok",
            result_count=len(results),
            parse=timings.parse,
            search=timings.search,
            fetch=timings.fetch,
            embedding=timings.embedding,
            rerank=timings.rerank,
            snippet=timings.snippet,
        )
        return SearchResponse(query=query, results=results, timings=timings)

    def _lexical_branch(self, session: ReadSession, parsed: ParsedQuery,
                        timings: StageTimings) -> List[Candidate]:
        """Top-K lexical candidates with decoded embeddings; runs on a worker thread."""
        stage = time.perf_counter()
        hits: List[Tuple[int, float]] = session.search(parsed, self.candidate_limit)
        timings.search = time.perf_counter() - stage

        stage = time.perf_counter()
        documents = session.fetch([doc_id for doc_id, _ in hits])
        candidates = [
            Candidate(
                document=document,
                lexical_score=score,
                lexical_rank=rank,
                embedding=decode_embedding(document.embedding, expected_dim=self.embedder.dimension),
            )
            for rank, (document, (_, score)) in enumerate(zip(documents, hits))
        ]
        timings.fetch = time.perf_counter() - stage
        return candidates

    async def _embedding_branch(self, query: str, timings: StageTimings) -> np.ndarray:
        stage = time.perf_counter()
        embedding = await self.embedder.aembed(query)
        timings.embedding = time.perf_counter() - stage
        record_embedding_time("query", timings.embedding)
        return embedding
