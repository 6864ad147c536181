from __future__ import annotations

"""Spatial vertex hashing.

Positions are snapped to a regular grid of cell size *tolerance*; two
vertices are "the same point" when they land in the same cell.  This is a
grid quantisation, not nearest-neighbour clustering: points on opposite
sides of a cell boundary never merge even when closer than *tolerance*.
"""

from typing import Tuple
import numpy as np

from ..constants import (
    DEFAULT_MERGE_TOLERANCE,
    HASH_PRIME_X,
    HASH_PRIME_Y,
    HASH_PRIME_Z,
    QUANTIZE_LIMIT,
)
from .types import GeometryError


def _check_tolerance(tolerance: float) -> None:
    if not tolerance > 0.0:
        raise GeometryError(f"tolerance must be positive, got {tolerance}")


def quantize(positions: np.ndarray, tolerance: float = DEFAULT_MERGE_TOLERANCE) -> np.ndarray:
    """Return integer grid coordinates (N×3, int64) using round-half-up.

    Raises
    ------
    GeometryError
        If a coordinate is not finite or ``|coord / tolerance|`` does not
        fit the int64 grid.
    """
    _check_tolerance(tolerance)
    points = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    scaled = points / tolerance
    if scaled.size and not np.all(np.abs(scaled) < QUANTIZE_LIMIT):
        extent = float(np.abs(points).max())
        raise GeometryError(
            f"coordinates up to {extent:g} cannot be quantized at tolerance {tolerance:g}; "
            f"|coord / tolerance| must stay below {QUANTIZE_LIMIT:g}"
        )
    return np.floor(scaled + 0.5).astype(np.int64)


def spatial_hash(positions: np.ndarray, tolerance: float = DEFAULT_MERGE_TOLERANCE) -> np.ndarray:
    """Combine quantised coordinates into one int64 key per vertex."""
    q = quantize(positions, tolerance)
    # int64 wrap-around on overflow is harmless for a hash
    with np.errstate(over="ignore"):
        return (
            (q[:, 0] * np.int64(HASH_PRIME_X))
            ^ (q[:, 1] * np.int64(HASH_PRIME_Y))
            ^ (q[:, 2] * np.int64(HASH_PRIME_Z))
        )


def count_duplicate_vertices(positions: np.ndarray, tolerance: float = DEFAULT_MERGE_TOLERANCE) -> int:
    """Number of vertices whose hash key was already seen earlier."""
    keys = spatial_hash(positions, tolerance)
    if keys.size == 0:
        return 0
    return int(keys.size - np.unique(keys).size)


def weld_map(
    positions: np.ndarray, tolerance: float = DEFAULT_MERGE_TOLERANCE
) -> Tuple[np.ndarray, np.ndarray]:
    """Compute the merge mapping for *positions*.

    Uses the exact quantised triple as key (no hash collisions).

    Returns
    -------
    remap
        ``remap[i]`` is the new (compacted) index of vertex ``i``.
    survivors
        Original indices of the kept vertices, in first-seen order.  The
        first vertex of each equivalence class (ascending index) is kept.
    """
    q = quantize(positions, tolerance)
    if len(q) == 0:
        empty = np.zeros(0, dtype=np.int64)
        return empty, empty

    _, first_index, inverse = np.unique(
        q, axis=0, return_index=True, return_inverse=True
    )
    inverse = inverse.reshape(-1)

    # np.unique orders classes lexicographically; reorder them by first occurrence
    order = np.argsort(first_index, kind="stable")
    class_to_new = np.empty_like(order)
    class_to_new[order] = np.arange(len(order))

    survivors = first_index[order].astype(np.int64)
    remap = class_to_new[inverse].astype(np.int64)
    return remap, survivors


class SpatialHasher:
    """Tolerance-bound convenience wrapper around the hashing helpers."""

    def __init__(self, tolerance: float = DEFAULT_MERGE_TOLERANCE) -> None:
        _check_tolerance(tolerance)
        self.tolerance = tolerance

    def key(self, x: float, y: float, z: float) -> int:
        """Hash key of a single coordinate triple."""
        return int(spatial_hash(np.array([[x, y, z]]), self.tolerance)[0])

    def same_point(self, a, b) -> bool:
        """True when *a* and *b* fall into the same grid cell."""
        q = quantize(np.array([a, b], dtype=np.float64), self.tolerance)
        return bool(np.array_equal(q[0], q[1]))

    def count_duplicates(self, positions: np.ndarray) -> int:
        return count_duplicate_vertices(positions, self.tolerance)

    def weld_map(self, positions: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        return weld_map(positions, self.tolerance)
