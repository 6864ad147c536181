"""
meshrepair ジオメトリ解析・修復コア

シーングラフに依存しない配列ベースの処理を提供します。

処理フロー:
1. 空間ハッシュによる頂点同一判定 (hashing.py)
2. 辺・隣接インデックス構築 (edges.py)
3. 欠陥解析 (analyzer.py)
4. 修復パス (operations.py)

シーングラフ上での修復オーケストレーションは repairer.py
(GeometryRepairer) を直接インポートしてください。
"""

# データ型
from .types import (
    Geometry,
    GeometryError,
    DefectReport,
    AggregateDefectReport,
    AnalysisResult
)

# 空間ハッシュ
from .hashing import (
    SpatialHasher,
    quantize,
    spatial_hash,
    count_duplicate_vertices,
    weld_map
)

# 辺インデックス
from .edges import (
    EdgeIndex,
    get_edge_key,
    decode_edge_key,
    build_edge_index,
    build_edge_face_map,
    degenerate_face_mask,
    is_degenerate_face
)

# 解析
from .analyzer import (
    GeometryAnalyzer,
    analyze_geometry,
    validate_manifold_geometry
)

# 修復パス
from .operations import (
    RepairOutcome,
    merge_vertices,
    remove_loose_vertices,
    fix_non_manifold_edges,
    remove_degenerate_faces,
    recalculate_normals,
    compute_vertex_normals
)

__all__ = [
    # データ型
    'Geometry',
    'GeometryError',
    'DefectReport',
    'AggregateDefectReport',
    'AnalysisResult',

    # 空間ハッシュ
    'SpatialHasher',
    'quantize',
    'spatial_hash',
    'count_duplicate_vertices',
    'weld_map',

    # 辺インデックス
    'EdgeIndex',
    'get_edge_key',
    'decode_edge_key',
    'build_edge_index',
    'build_edge_face_map',
    'degenerate_face_mask',
    'is_degenerate_face',

    # 解析
    'GeometryAnalyzer',
    'analyze_geometry',
    'validate_manifold_geometry',

    # 修復パス
    'RepairOutcome',
    'merge_vertices',
    'remove_loose_vertices',
    'fix_non_manifold_edges',
    'remove_degenerate_faces',
    'recalculate_normals',
    'compute_vertex_normals'
]
