"""
Vector math used by the embedding and search paths.

Norms and dot products are taken after dividing by the largest absolute
component, so very large or very small finite vectors neither overflow to
inf nor underflow to zero.
"""

import numpy as np

from ..core.errors import InvalidDimension


def check_dimensions(a: np.ndarray, b: np.ndarray):
    """Raise InvalidDimension unless both vectors have the same length."""
    if len(a) != len(b):
        raise InvalidDimension(len(a), len(b))


def _rescale(vector: np.ndarray):
    """Return (vector / max|component|, scale). Scale is 0 for the zero vector."""
    vector = np.asarray(vector, dtype=np.float64)
    scale = np.max(np.abs(vector)) if len(vector) else 0.0
    if scale == 0:
        return vector, 0.0
    return vector / scale, scale


def normalize(vector: np.ndarray) -> np.ndarray:
    """Scale a vector to unit length. A zero vector is returned unchanged."""
    scaled, scale = _rescale(vector)
    if scale == 0:
        return vector
    return scaled / np.linalg.norm(scaled)


def is_zero(vector: np.ndarray) -> bool:
    """True for the all-zero "no embedding available" sentinel."""
    return not np.any(vector)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity in [-1, 1]; 0 when either vector has zero norm."""
    check_dimensions(a, b)

    a, scale_a = _rescale(a)
    b, scale_b = _rescale(b)
    if scale_a == 0 or scale_b == 0:
        return 0.0

    score = float(np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b)))
    if not np.isfinite(score):
        return 0.0
    return min(1.0, max(-1.0, score))


def batch_cosine_similarity(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``matrix``.

    Rows with zero norm score 0, as does any non-finite score. Scores are
    clipped to [-1, 1].
    """
    if matrix.shape[1] != len(query):
        raise InvalidDimension(len(query), matrix.shape[1])

    query, query_scale = _rescale(query)
    if query_scale == 0:
        return np.zeros(matrix.shape[0])

    row_scales = np.max(np.abs(matrix), axis=1)
    nonzero = row_scales > 0
    scaled = matrix[nonzero] / row_scales[nonzero][:, np.newaxis]

    scores = np.zeros(matrix.shape[0])
    scores[nonzero] = (scaled @ query) / (np.linalg.norm(scaled, axis=1) * np.linalg.norm(query))
    scores[~np.isfinite(scores)] = 0.0
    return np.clip(scores, -1.0, 1.0)
