"""
Similarity Helpers
===================
Cosine similarity between embeddings, all-pairs similarity matrices and a
brute-force top-k search for small in-memory collections.

Accepts ``Embedding`` objects or plain 1-D arrays / lists interchangeably.
For normalised embeddings cosine similarity equals the dot product, but
these helpers do not assume normalisation.
"""

from typing import Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

import numpy as np

from local_embeddings.embeddings.types import Embedding
from local_embeddings.errors import ConfigurationError

T = TypeVar("T")
VectorLike = Union[Embedding, np.ndarray, Sequence[float]]


def _as_vector(value: VectorLike) -> np.ndarray:
    if value is None:
        raise ConfigurationError("embedding cannot be None")
    if isinstance(value, Embedding):
        return value.vector
    return np.asarray(value, dtype=np.float32).reshape(-1)


def _as_matrix(values: Iterable[VectorLike]) -> np.ndarray:
    if values is None:
        raise ConfigurationError("embeddings cannot be None")
    rows = [_as_vector(v) for v in values]
    if not rows:
        return np.zeros((0, 0), dtype=np.float32)
    dims = {row.shape[0] for row in rows}
    if len(dims) > 1:
        raise ConfigurationError(f"Embeddings have mixed dimensions: {sorted(dims)}")
    return np.stack(rows)


def _unit_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    return np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """
    Cosine of the angle between two vectors, in [-1, 1].

    Returns 0.0 when either vector is all zeros.
    """
    va, vb = _as_vector(a), _as_vector(b)
    if va.shape != vb.shape:
        raise ConfigurationError(
            f"Vectors must have the same length ({va.shape[0]} != {vb.shape[0]})"
        )
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def similarity_matrix(
    left: Iterable[VectorLike], right: Optional[Iterable[VectorLike]] = None
) -> np.ndarray:
    """
    All-pairs cosine similarity.

    Args:
        left  : row embeddings
        right : column embeddings; defaults to ``left`` (square matrix)

    Returns:
        (len(left), len(right)) float32 array.
    """
    lm = _as_matrix(left)
    rm = lm if right is None else _as_matrix(right)
    if lm.shape[0] == 0 or rm.shape[0] == 0:
        return np.zeros((lm.shape[0], rm.shape[0]), dtype=np.float32)
    if lm.shape[1] != rm.shape[1]:
        raise ConfigurationError(
            f"Embedding dimensions do not match ({lm.shape[1]} != {rm.shape[1]})"
        )
    return (_unit_rows(lm) @ _unit_rows(rm).T).astype(np.float32)


def find_closest(
    items: Iterable[Tuple[T, VectorLike]],
    query: VectorLike,
    top_k: int = 5,
    min_score: float = 0.0,
) -> List[Tuple[T, float]]:
    """
    Rank ``(item, embedding)`` pairs by cosine similarity to *query*.

    Returns at most *top_k* ``(item, score)`` tuples with score >= min_score,
    best first.
    """
    if items is None:
        raise ConfigurationError("items cannot be None")
    if top_k < 0:
        raise ConfigurationError(f"top_k cannot be negative, got {top_k}")
    query_vec = _as_vector(query)
    scored = [(item, cosine_similarity(query_vec, emb)) for item, emb in items]
    scored = [pair for pair in scored if pair[1] >= min_score]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:top_k]
