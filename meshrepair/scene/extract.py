from __future__ import annotations

"""Mesh extraction adapter.

Walks a scene graph depth-first and returns handles to every drawable
triangle mesh.  The repair engine only ever sees ``(name, Geometry)``
pairs; lights, cameras, groups and other node kinds are skipped here.
"""

from dataclasses import dataclass
from typing import List, Tuple

from ..constants import UNNAMED_MESH_PREFIX
from ..geometry.types import Geometry
from .graph import MeshNode, SceneNode


@dataclass(eq=False)
class MeshHandle:
    """A mesh found during traversal.

    Attributes
    ----------
    node : MeshNode
        The scene node; its ``geometry`` is replaced by repair passes.
    name : str
        Node name, or ``Mesh_<n>`` when the node is unnamed.
    index : int
        Position in the flattened traversal order.
    """

    node: MeshNode
    name: str
    index: int

    @property
    def geometry(self) -> Geometry:
        return self.node.geometry

    @geometry.setter
    def geometry(self, value: Geometry) -> None:
        self.node.geometry = value


def is_mesh_with_geometry(node: SceneNode) -> bool:
    return isinstance(node, MeshNode) and node.has_geometry


def extract_meshes(root: SceneNode) -> List[MeshHandle]:
    """Return handles for all meshes below (and including) *root*."""
    handles: List[MeshHandle] = []
    for node in root.traverse():
        if is_mesh_with_geometry(node):
            index = len(handles)
            name = node.name or f"{UNNAMED_MESH_PREFIX}{index}"
            handles.append(MeshHandle(node=node, name=name, index=index))
    return handles


def mesh_geometries(root: SceneNode) -> List[Tuple[str, Geometry]]:
    """Flat ``(name, geometry)`` pairs for analysis."""
    return [(h.name, h.geometry) for h in extract_meshes(root)]
