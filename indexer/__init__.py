"""Indexer package for docsearch.

Provides the document store, embedding service, vector codec, query parsing
and similarity ranking.
"""

from .codec import EmbeddingCodecError, decode_embedding, encode_embedding
from .embeddings import EmbeddingError, EmbeddingService, ModelLoadError
from .query_parser import ParsedQuery, QuerySyntaxError, parse_query
from .similarity import cosine_similarity, rerank
from .store import (
    Checkpoint,
    Document,
    DocumentStore,
    StoredDocument,
    StoreError,
    StoreErrorCode,
)

__all__ = [
    # Codec
    'EmbeddingCodecError',
    'decode_embedding',
    'encode_embedding',

    # Embeddings
    'EmbeddingError',
    'EmbeddingService',
    'ModelLoadError',

    # Queries
    'ParsedQuery',
    'QuerySyntaxError',
    'parse_query',
    'cosine_similarity',
    'rerank',

    # Store
    'Checkpoint',
    'Document',
    'DocumentStore',
    'StoredDocument',
    'StoreError',
    'StoreErrorCode',
]
