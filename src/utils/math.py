from __future__ import annotations

from typing import Any, Optional

import numpy as np


def as_descriptor(vec: Any) -> Optional[np.ndarray]:
    """Coerce an array-like into a flat float64 descriptor.

    Returns None when the input cannot be read as numbers.
    """
    if vec is None:
        return None
    try:
        return np.asarray(vec, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        return None


def scale_by_max(arr: np.ndarray) -> np.ndarray:
    """Divide by the largest |component| (per row for 2D) so squaring cannot overflow or underflow.

    Zero and non-finite vectors (or rows) come back unscaled. Direction is unchanged.
    """
    arr = np.asarray(arr, dtype=np.float64)
    if arr.size == 0:
        return arr
    if arr.ndim == 1:
        m = float(np.max(np.abs(arr)))
        if m == 0.0 or not np.isfinite(m):
            return arr
        return arr / m
    m = np.max(np.abs(arr), axis=1, keepdims=True)
    m[(m == 0.0) | ~np.isfinite(m)] = 1.0
    return arr / m


def l2_normalize(vec: Any) -> np.ndarray:
    """L2-normalize a vector (or 2D array row-wise).

    A zero-magnitude vector (or row) is returned unchanged rather than divided.
    The input is never modified in place.
    """
    arr = np.array(vec, dtype=np.float64)
    if arr.ndim == 1:
        scaled = scale_by_max(arr)
        denom = float(np.sqrt(np.sum(scaled * scaled)))
        if denom == 0.0:
            return arr
        return scaled / denom
    if arr.ndim == 2:
        scaled = scale_by_max(arr)
        norms = np.sqrt(np.sum(scaled * scaled, axis=1, keepdims=True))
        norms[norms == 0.0] = 1.0
        return scaled / norms
    raise ValueError(f"Unsupported ndim={arr.ndim}")


def cosine_similarity(a: Any, b: Any) -> float:
    """Cosine similarity for 1D vectors.

    Length mismatch, zero magnitude and non-numeric or non-finite input all give 0.0.
    """
    va = as_descriptor(a)
    vb = as_descriptor(b)
    if va is None or vb is None or va.shape[0] != vb.shape[0]:
        return 0.0
    va = scale_by_max(va)
    vb = scale_by_max(vb)
    na = float(np.sqrt(np.sum(va * va)))
    nb = float(np.sqrt(np.sum(vb * vb)))
    if na == 0.0 or nb == 0.0:
        return 0.0
    sim = float(np.sum(va * vb) / (na * nb))
    if not np.isfinite(sim):
        return 0.0
    # Rounding can push |sim| a hair past 1.
    return float(min(1.0, max(-1.0, sim)))
