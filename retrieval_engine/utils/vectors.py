from typing import Sequence

import numpy as np


def as_vector(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float32)


def is_finite(values: Sequence[float]) -> bool:
    return bool(np.all(np.isfinite(as_vector(values))))


def cosine_similarities(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Similarity of every row of `matrix` to `query`; zero rows score 0.0."""
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)
    matrix = matrix.astype(np.float64, copy=False)
    query = query.astype(np.float64, copy=False)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    sims = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)
    return np.clip(sims, -1.0, 1.0)
