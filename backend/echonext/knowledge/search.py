"""Exhaustive cosine-similarity search over a knowledge base.

Knowledge bases hold hundreds to low thousands of chunks, so every chunk
is scored against the query with one matrix-vector product over a
row-normalised embedding matrix cached on the knowledge base.
"""

import logging
from typing import Sequence

import numpy as np

from echonext.core.exceptions import DimensionMismatchError
from echonext.knowledge.models import KnowledgeBase, SearchResult

logger = logging.getLogger(__name__)


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine similarity between two vectors.

    Returns 0.0 instead of NaN when either vector is empty, the lengths
    differ, or either vector has zero norm.

    Args:
        vec_a: First vector.
        vec_b: Second vector.

    Returns:
        Similarity in [-1, 1].
    """
    if len(vec_a) == 0 or len(vec_a) != len(vec_b):
        return 0.0

    a = np.asarray(vec_a, dtype=np.float64)
    b = np.asarray(vec_b, dtype=np.float64)
    norm_product = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm_product == 0.0 or not np.isfinite(norm_product):
        return 0.0

    score = float(np.dot(a, b)) / norm_product
    return float(np.clip(score, -1.0, 1.0))


def embedding_matrix(knowledge_base: KnowledgeBase) -> np.ndarray:
    """Row-normalised (N, D) embedding matrix, built once per knowledge base.

    Rows whose length differs from the knowledge base dimension, or whose
    norm is zero, are left as zeros so they score 0 against any query.
    """
    cached = knowledge_base._search_index
    if cached is not None and cached.shape[0] == len(knowledge_base.chunks):
        return cached

    dimension = knowledge_base.dimension or 0
    matrix = np.zeros((len(knowledge_base.chunks), dimension), dtype=np.float64)
    for i, chunk in enumerate(knowledge_base.chunks):
        if len(chunk.embedding) == dimension:
            matrix[i] = chunk.embedding

    norms = np.linalg.norm(matrix, axis=1)
    usable = (norms > 0) & np.isfinite(norms)
    matrix[usable] /= norms[usable, np.newaxis]
    matrix[~usable] = 0.0

    knowledge_base._search_index = matrix
    return matrix


def search(
    knowledge_base: KnowledgeBase,
    query_embedding: Sequence[float],
    top_k: int = 3,
) -> list[SearchResult]:
    """Rank all chunks by similarity to a query embedding.

    Chunks whose dimensionality differs from the query score 0. Ties keep
    the original chunk order.

    Args:
        knowledge_base: Knowledge base to scan.
        query_embedding: Query vector.
        top_k: Maximum number of results.

    Returns:
        Up to ``top_k`` results sorted by descending score.
    """
    if top_k <= 0 or not knowledge_base.chunks:
        return []

    matrix = embedding_matrix(knowledge_base)
    query = np.asarray(query_embedding, dtype=np.float64)
    query_norm = float(np.linalg.norm(query)) if query.size else 0.0

    if query.shape != (matrix.shape[1],) or query_norm == 0.0 or not np.isfinite(query_norm):
        scores = np.zeros(matrix.shape[0], dtype=np.float64)
    else:
        scores = np.clip(matrix @ (query / query_norm), -1.0, 1.0)

    # Stable sort on negated scores keeps insertion order among ties
    order = np.argsort(-scores, kind="stable")[:top_k]

    return [
        SearchResult(text=knowledge_base.chunks[i].text, score=float(scores[i]))
        for i in order
    ]


def search_strict(
    knowledge_base: KnowledgeBase,
    query_embedding: Sequence[float],
    top_k: int = 3,
) -> list[SearchResult]:
    """Like search(), but reject a query whose dimensionality does not match.

    Raises:
        DimensionMismatchError: If the query length differs from the
            knowledge base's embedding dimensionality.
    """
    dimension = knowledge_base.dimension
    if dimension is not None and len(query_embedding) != dimension:
        logger.warning(
            f"Query embedding has {len(query_embedding)} dims, "
            f"knowledge base '{knowledge_base.model_name}' has {dimension}"
        )
        raise DimensionMismatchError(expected=dimension, actual=len(query_embedding))
    return search(knowledge_base, query_embedding, top_k)
