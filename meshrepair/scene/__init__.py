"""
シーングラフとメッシュ抽出アダプタ
"""

from .graph import SceneNode, MeshNode
from .extract import MeshHandle, extract_meshes, mesh_geometries, is_mesh_with_geometry

__all__ = [
    'SceneNode',
    'MeshNode',
    'MeshHandle',
    'extract_meshes',
    'mesh_geometries',
    'is_mesh_with_geometry'
]
