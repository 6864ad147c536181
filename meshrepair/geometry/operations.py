from __future__ import annotations

"""Geometry repair passes.

Every pass is a pure function ``pass(geometry, ...) -> RepairOutcome``.
The input geometry is never modified; a fully rebuilt :class:`Geometry`
is returned together with the number of items the pass fixed.  Passes that
need an index buffer return the geometry unchanged with a count of 0 when
given non-indexed geometry.

No pass ever reorders the vertices of a face (winding is preserved); faces
are only remapped or dropped.
"""

from typing import NamedTuple
import numpy as np

from .. import get_logger
from ..constants import DEFAULT_MERGE_TOLERANCE, NORMAL_EPSILON
from .types import Geometry
from .hashing import weld_map
from .edges import degenerate_face_mask, excess_edge_faces, face_cross_products

logger = get_logger(__name__)


class RepairOutcome(NamedTuple):
    """Result of a single repair pass."""

    geometry: Geometry
    count: int


def _take(values: np.ndarray | None, rows: np.ndarray) -> np.ndarray | None:
    return None if values is None else values[rows].copy()


# ---------------------------------------------------------------------------
# Vertex-set passes
# ---------------------------------------------------------------------------

def merge_vertices(geometry: Geometry, tolerance: float = DEFAULT_MERGE_TOLERANCE) -> RepairOutcome:
    """Weld vertices that share a tolerance-grid cell.

    The first vertex (ascending index) of each cell survives; attributes of
    later duplicates are discarded.  Non-indexed input is converted to an
    indexed geometry so that welded triangles keep referencing valid
    vertices.
    """
    remap, survivors = weld_map(geometry.positions, tolerance)
    merged = geometry.vertex_count - len(survivors)

    triangles = geometry.triangles()
    new_indices = remap[triangles] if len(triangles) else np.zeros((0, 3), dtype=np.int64)

    rebuilt = Geometry(
        positions=geometry.positions[survivors].copy(),
        normals=_take(geometry.normals, survivors),
        uvs=_take(geometry.uvs, survivors),
        indices=new_indices,
    )
    return RepairOutcome(rebuilt, int(merged))


def remove_loose_vertices(geometry: Geometry) -> RepairOutcome:
    """Drop vertices that no face references and compact the index buffer."""
    if not geometry.is_indexed:
        logger.info("Cannot remove loose vertices from non-indexed geometry")
        return RepairOutcome(geometry, 0)

    used = np.zeros(geometry.vertex_count, dtype=bool)
    used[geometry.indices.ravel()] = True
    survivors = np.flatnonzero(used)

    remap = np.full(geometry.vertex_count, -1, dtype=np.int64)
    remap[survivors] = np.arange(len(survivors), dtype=np.int64)

    rebuilt = Geometry(
        positions=geometry.positions[survivors].copy(),
        normals=_take(geometry.normals, survivors),
        uvs=_take(geometry.uvs, survivors),
        indices=remap[geometry.indices],
    )
    return RepairOutcome(rebuilt, int(geometry.vertex_count - len(survivors)))


# ---------------------------------------------------------------------------
# Face passes
# ---------------------------------------------------------------------------

def _drop_faces(geometry: Geometry, drop: np.ndarray) -> Geometry:
    return Geometry(
        positions=geometry.positions.copy(),
        normals=None if geometry.normals is None else geometry.normals.copy(),
        uvs=None if geometry.uvs is None else geometry.uvs.copy(),
        indices=geometry.indices[~drop].copy(),
    )


def fix_non_manifold_edges(geometry: Geometry) -> RepairOutcome:
    """Keep the first two faces on every over-shared edge, drop the rest."""
    if not geometry.is_indexed:
        logger.info("Cannot fix non-manifold edges on non-indexed geometry")
        return RepairOutcome(geometry, 0)

    excess = excess_edge_faces(geometry.indices)
    drop = np.zeros(len(geometry.indices), dtype=bool)
    drop[excess] = True
    return RepairOutcome(_drop_faces(geometry, drop), int(len(excess)))


def remove_degenerate_faces(
    geometry: Geometry, tolerance: float = DEFAULT_MERGE_TOLERANCE
) -> RepairOutcome:
    """Drop faces with a repeated vertex index or (near) zero area."""
    if not geometry.is_indexed:
        logger.info("Cannot remove degenerate faces from non-indexed geometry")
        return RepairOutcome(geometry, 0)

    drop = degenerate_face_mask(geometry.positions, geometry.indices, tolerance)
    return RepairOutcome(_drop_faces(geometry, drop), int(np.count_nonzero(drop)))


# ---------------------------------------------------------------------------
# Attributes
# ---------------------------------------------------------------------------

def compute_vertex_normals(positions: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """Average unit face normals onto vertices; unused vertices stay zero."""
    normals = np.zeros_like(positions, dtype=np.float64)
    if len(triangles) == 0:
        return normals

    face_normals = face_cross_products(positions, triangles)
    lengths = np.linalg.norm(face_normals, axis=1, keepdims=True)
    face_normals = np.divide(
        face_normals, lengths,
        out=np.zeros_like(face_normals), where=lengths > NORMAL_EPSILON,
    )

    for corner in range(3):
        np.add.at(normals, triangles[:, corner], face_normals)

    lengths = np.linalg.norm(normals, axis=1, keepdims=True)
    return np.divide(normals, lengths, out=np.zeros_like(normals), where=lengths > NORMAL_EPSILON)


def recalculate_normals(geometry: Geometry) -> RepairOutcome:
    """Rebuild the normal attribute from face geometry.

    The count is 1 per processed geometry, not a defect count.
    """
    normals = compute_vertex_normals(geometry.positions, geometry.triangles())
    return RepairOutcome(geometry.replace(normals=normals), 1)
