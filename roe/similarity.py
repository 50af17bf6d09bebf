"""Cosine similarity shared by every scoring component."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from .errors import DimensionMismatchError


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=float).reshape(-1)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Return cosine similarity in [-1, 1].

    Raises :class:`DimensionMismatchError` when the lengths differ. A zero
    vector has no direction and scores 0.0.
    """
    vec_a = as_vector(a)
    vec_b = as_vector(b)
    if vec_a.shape != vec_b.shape:
        raise DimensionMismatchError(int(vec_a.size), int(vec_b.size))
    norm = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if not np.isfinite(norm) or norm <= 1e-12:
        return 0.0
    sim = float(np.dot(vec_a, vec_b)) / norm
    return float(np.clip(sim, -1.0, 1.0))


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    if lo > hi:
        lo, hi = hi, lo
    val = float(value)
    if val < lo:
        return lo
    if val > hi:
        return hi
    return val


__all__ = ["as_vector", "cosine_similarity", "clamp"]
