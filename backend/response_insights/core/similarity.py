import numpy as np
from typing import List, Sequence
from sklearn.metrics.pairwise import cosine_similarity


def cosine_distances_to(query: Sequence[float], vectors: List[Sequence[float]]) -> np.ndarray:
    """
    Cosine distance (1 - cosine similarity) from `query` to each row of `vectors`.

    Magnitude does not affect the result. A zero vector has similarity 0 to
    everything, so its distance is 1. Values are clipped to [0, 2] to absorb
    floating point error.
    """
    if not vectors:
        return np.empty(0, dtype=np.float64)
    q = np.asarray(query, dtype=np.float64).reshape(1, -1)
    matrix = np.asarray(vectors, dtype=np.float64)
    similarities = cosine_similarity(q, matrix)[0]
    return np.clip(1.0 - similarities, 0.0, 2.0)


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine distance between two vectors."""
    return float(cosine_distances_to(a, [b])[0])
