from __future__ import annotations

"""Sensor aperture paths.

An aperture is an ``(S, 3)`` array of sensor positions visited in order.
"""

import math
from typing import Sequence

import numpy as np


def _as_point(value: Sequence[float], label: str) -> np.ndarray:
    point = np.asarray(value, dtype=np.float64).reshape(-1)
    if point.shape != (3,):
        raise ValueError(f"{label} must be a 3D point, got shape {point.shape}")
    return point


def linear_aperture(start: Sequence[float], end: Sequence[float], samples: int) -> np.ndarray:
    """Evenly spaced positions on the segment ``start -> end`` (inclusive).

    Parameters
    ----------
    start, end : sequence of float
        Segment endpoints.
    samples : int
        Number of positions; ``0`` yields an empty path.
    """
    if samples < 0:
        raise ValueError(f"samples must be >= 0, got {samples}")
    a = _as_point(start, "start")
    b = _as_point(end, "end")
    t = np.linspace(0.0, 1.0, samples)[:, None]
    return a + (b - a) * t


def circular_aperture(
    center: Sequence[float],
    radius: float,
    height: float,
    samples: int,
    arc: float = 2.0 * math.pi,
) -> np.ndarray:
    """Positions on a horizontal circle (or arc) around *center*.

    A full circle does not repeat its first sample.
    """
    if samples < 0:
        raise ValueError(f"samples must be >= 0, got {samples}")
    if radius <= 0:
        raise ValueError(f"radius must be positive, got {radius}")
    c = _as_point(center, "center")
    full_circle = math.isclose(arc, 2.0 * math.pi)
    angles = np.linspace(0.0, arc, samples, endpoint=not full_circle)
    path = np.empty((samples, 3), dtype=np.float64)
    path[:, 0] = c[0] + radius * np.cos(angles)
    path[:, 1] = c[1] + radius * np.sin(angles)
    path[:, 2] = c[2] + height
    return path
