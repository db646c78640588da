"""Cosine similarity and stable semantic reranking."""

import math
from typing import Callable, List, Sequence, Tuple, TypeVar

import numpy as np

T = TypeVar("T")


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Calculate cosine similarity between two vectors.

    Computed in float64. A zero-norm input yields NaN rather than raising.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"Shape mismatch: {a.shape} vs {b.shape}")

    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b)))


def _sort_key(scored: Tuple[T, float]) -> Tuple[int, float]:
    similarity = scored[1]
    if math.isnan(similarity):
        return (1, 0.0)
    return (0, -similarity)


def rerank(
    candidates: Sequence[T],
    query_embedding: np.ndarray,
    embedding_of: Callable[[T], np.ndarray],
    limit: int,
) -> List[Tuple[T, float]]:
    """Order candidates by similarity to the query, best first.

    The sort is stable: equal similarities keep their input (lexical) order,
    and NaN similarities go to the end in input order.

    Returns:
        At most ``limit`` ``(candidate, similarity)`` pairs.
    """
    scored = [(c, cosine_similarity(query_embedding, embedding_of(c))) for c in candidates]
    scored.sort(key=_sort_key)
    return scored[:limit]
