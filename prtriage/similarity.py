"""Cosine similarity helpers over embedding vectors."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from numpy.typing import NDArray
from sklearn.metrics.pairwise import cosine_similarity as _sk_cosine_similarity

from prtriage.constants import SIMILAR_ITEMS_LIMIT, SIMILARITY_DECIMALS
from prtriage.models import CachedVectorEntry, SimilarItem


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine of the angle between two vectors.

    Returns 0.0 for mismatched lengths, empty input or a zero-norm vector.
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def similarity_matrix(vectors: Sequence[Sequence[float]]) -> NDArray[np.float64]:
    """
    All pairwise similarities as an n x n matrix.

    Uses one vectorized pass when every vector shares a dimension; otherwise
    falls back to pairwise cosine_similarity so mismatched pairs score 0.0.
    """
    n = len(vectors)
    if n == 0:
        return np.zeros((0, 0), dtype=np.float64)
    dims = {len(v) for v in vectors}
    if len(dims) == 1 and 0 not in dims:
        arr = np.asarray(vectors, dtype=np.float64)
        norms = np.linalg.norm(arr, axis=1)
        sims = _sk_cosine_similarity(arr)
        # sklearn maps zero vectors to 0 similarity already; keep it explicit
        zero = norms == 0.0
        sims[zero, :] = 0.0
        sims[:, zero] = 0.0
        return sims.astype(np.float64)

    sims = np.zeros((n, n), dtype=np.float64)
    for i in range(n):
        for j in range(i, n):
            s = cosine_similarity(vectors[i], vectors[j])
            sims[i, j] = s
            sims[j, i] = s
    return sims


def find_similar(
    target: Sequence[float],
    target_number: int,
    entries: Sequence[CachedVectorEntry],
    threshold: float,
    limit: int = SIMILAR_ITEMS_LIMIT,
) -> list[SimilarItem]:
    """Cached items at or above threshold, most similar first."""
    matches: list[SimilarItem] = []
    for entry in entries:
        if entry.number == target_number or not entry.embedding:
            continue
        score = cosine_similarity(target, entry.embedding)
        if score >= threshold:
            matches.append(
                SimilarItem(
                    number=entry.number,
                    score=round(score, SIMILARITY_DECIMALS),
                    title=entry.title,
                )
            )
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches[:limit]
