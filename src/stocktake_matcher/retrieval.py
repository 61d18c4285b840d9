from __future__ import annotations

from typing import Hashable, Sequence

import numpy as np

DEFAULT_TOP_K = 3


def cosine(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity; 0.0 for empty, zero-norm or mismatched vectors."""
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.size == 0 or vb.size == 0 or va.shape != vb.shape:
        return 0.0
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    score = float(va @ vb) / (na * nb)
    return max(-1.0, min(1.0, score))


def rank(
    query: Sequence[float] | np.ndarray,
    candidates: Sequence[tuple[Hashable, Sequence[float]]],
    top_k: int = DEFAULT_TOP_K,
) -> list[tuple[Hashable, float]]:
    """Return (id, score) for the best positive cosine matches, highest first.

    Ties keep the order in which candidates were given.
    """
    if top_k <= 0:
        return []
    scored = [(cid, cosine(query, vector)) for cid, vector in candidates]
    positive = [(cid, score) for cid, score in scored if score > 0]
    positive.sort(key=lambda item: item[1], reverse=True)
    return positive[:top_k]
