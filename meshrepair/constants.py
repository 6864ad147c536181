#!/usr/bin/env python3
"""
共通定数・設定値

解析・修復・レーダー合成で使用される定数や閾値を一元管理し、
モジュール間の循環依存を解消します。
"""

from typing import Final, Tuple

# =============================================================================
# 数値精度・許容誤差
# =============================================================================

# 頂点マージ・縮退判定の既定許容誤差（ジオメトリ自身の単位）
DEFAULT_MERGE_TOLERANCE: Final[float] = 1e-6

# 法線正規化時のゼロ判定
NORMAL_EPSILON: Final[float] = 1e-12

# =============================================================================
# 空間ハッシュ
# =============================================================================

# 3D空間ハッシュ用の大きな奇数素数
HASH_PRIME_X: Final[int] = 73856093
HASH_PRIME_Y: Final[int] = 19349663
HASH_PRIME_Z: Final[int] = 83492791

# 量子化座標の上限 |coord / tolerance|（int64 への変換で桁あふれしない範囲）
QUANTIZE_LIMIT: Final[float] = float(2 ** 62)

# =============================================================================
# 修復パイプライン
# =============================================================================

STEP_MERGE_VERTICES: Final[str] = "merge_vertices"
STEP_REMOVE_LOOSE_VERTICES: Final[str] = "remove_loose_vertices"
STEP_FIX_NON_MANIFOLD_EDGES: Final[str] = "fix_non_manifold_edges"
STEP_REMOVE_DEGENERATE_FACES: Final[str] = "remove_degenerate_faces"
STEP_RECALCULATE_NORMALS: Final[str] = "recalculate_normals"
STEP_VALIDATE_AND_REREPAIR: Final[str] = "validate_and_rerepair"

REPAIR_STEP_ORDER: Final[Tuple[str, ...]] = (
    STEP_MERGE_VERTICES,
    STEP_REMOVE_LOOSE_VERTICES,
    STEP_FIX_NON_MANIFOLD_EDGES,
    STEP_REMOVE_DEGENERATE_FACES,
    STEP_RECALCULATE_NORMALS,
)

# 多様体化の反復上限
MAX_MANIFOLD_ITERATIONS: Final[int] = 3

# 多様体辺の接続面数
MANIFOLD_EDGE_INCIDENCE: Final[int] = 2

# 名前のないメッシュに付与する名前
UNNAMED_MESH_PREFIX: Final[str] = "Mesh_"

# エクスポート経路
EXPORT_PATH_MANIFOLD: Final[str] = "manifold"
EXPORT_PATH_SILHOUETTE: Final[str] = "silhouette"

# =============================================================================
# レーダー画像合成
# =============================================================================

SPEED_OF_LIGHT: Final[float] = 299_792_458.0  # m/s

# レンジ圧縮用 5タップ鮮鋭化カーネル
RANGE_COMPRESSION_KERNEL: Final[Tuple[float, ...]] = (-0.5, -1.0, 4.0, -1.0, -0.5)

# アジマス集束用 7タップガウシアンカーネル（sigma=1.0、正規化前）
AZIMUTH_FOCUS_SIGMA: Final[float] = 1.0
AZIMUTH_FOCUS_TAPS: Final[int] = 7

DEFAULT_SAR_FREQUENCY: Final[float] = 10e9      # 10 GHz (X-band)
DEFAULT_SAR_IMAGE_SIZE: Final[int] = 128
DEFAULT_SAR_RESOLUTION: Final[float] = 0.05     # 5cm/pixel
