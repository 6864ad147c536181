#!/usr/bin/env python3
"""
辺・隣接インデックス

三角形インデックスバッファを1パスで走査し、辺の接続面数・頂点の接続面数・
頂点の隣接頂点数を同時に構築します。全ての多様体判定の基盤です。
縮退面（重複インデックスまたは面積ゼロ）は分類のみ行い、カウンタには
寄与させません。
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Tuple, Union
import numpy as np

from ..constants import DEFAULT_MERGE_TOLERANCE, MANIFOLD_EDGE_INCIDENCE


# ---------------------------------------------------------------------------
# Edge keys (Cantor pairing)
# ---------------------------------------------------------------------------

def get_edge_key(a: int, b: int) -> int:
    """無向辺 (a, b) の正規化キー（Cantorペアリング）"""
    lo, hi = (a, b) if a <= b else (b, a)
    s = lo + hi
    return s * (s + 1) // 2 + hi


def decode_edge_key(key: int) -> Tuple[int, int]:
    """get_edge_key の逆変換。(min, max) を返す"""
    w = (math.isqrt(8 * key + 1) - 1) // 2
    t = w * (w + 1) // 2
    hi = key - t
    lo = w - hi
    return lo, hi


def edge_keys(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """get_edge_key のベクトル版"""
    lo = np.minimum(a, b).astype(np.int64)
    hi = np.maximum(a, b).astype(np.int64)
    s = lo + hi
    return s * (s + 1) // 2 + hi


def decode_edge_keys(keys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """decode_edge_key のベクトル版（浮動小数点の丸めを整数で補正）"""
    keys = np.asarray(keys, dtype=np.int64)
    w = np.floor((np.sqrt(8.0 * keys.astype(np.float64) + 1.0) - 1.0) / 2.0).astype(np.int64)
    # sqrt の誤差で ±1 ずれる場合がある
    w = np.where(w * (w + 1) // 2 > keys, w - 1, w)
    w = np.where((w + 1) * (w + 2) // 2 <= keys, w + 1, w)
    t = w * (w + 1) // 2
    hi = keys - t
    lo = w - hi
    return lo, hi


# ---------------------------------------------------------------------------
# Degenerate faces
# ---------------------------------------------------------------------------

def face_cross_products(positions: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """各三角形の辺ベクトル外積 (M, 3)"""
    v0 = positions[triangles[:, 0]]
    v1 = positions[triangles[:, 1]]
    v2 = positions[triangles[:, 2]]
    return np.cross(v1 - v0, v2 - v0)


def degenerate_face_mask(
    positions: np.ndarray,
    triangles: np.ndarray,
    tolerance: float = DEFAULT_MERGE_TOLERANCE,
) -> np.ndarray:
    """縮退面マスク

    重複インデックスを持つ面、または外積長の2乗が tolerance² 未満の面を
    True とする。1つの面は条件が重なっても1回だけ数えられる。
    """
    triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
    if len(triangles) == 0:
        return np.zeros(0, dtype=bool)

    a, b, c = triangles[:, 0], triangles[:, 1], triangles[:, 2]
    repeated = (a == b) | (b == c) | (c == a)

    cross = face_cross_products(np.asarray(positions, dtype=np.float64), triangles)
    length_sq = np.einsum("ij,ij->i", cross, cross)
    zero_area = length_sq < tolerance * tolerance

    return repeated | zero_area


def is_degenerate_face(
    positions: np.ndarray, a: int, b: int, c: int,
    tolerance: float = DEFAULT_MERGE_TOLERANCE,
) -> bool:
    """単一面の縮退判定"""
    if a == b or b == c or c == a:
        return True
    return bool(degenerate_face_mask(positions, np.array([[a, b, c]]), tolerance)[0])


# ---------------------------------------------------------------------------
# Edge index
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class EdgeIndex:
    """辺・頂点の接続情報"""
    edge_keys: np.ndarray              # 一意な辺キー (E,)
    edge_vertices: np.ndarray          # 辺の端点 (E, 2)、(min, max)
    edge_incidence: np.ndarray         # 辺ごとの接続面数 (E,)
    vertex_face_count: np.ndarray      # 頂点ごとの接続面数 (N,)
    vertex_neighbor_count: np.ndarray  # 頂点ごとの隣接頂点数 (N,)
    degenerate_face_count: int
    degenerate_mask: np.ndarray        # 面ごとの縮退フラグ (M,)

    @property
    def num_edges(self) -> int:
        return len(self.edge_keys)

    @property
    def boundary_edge_count(self) -> int:
        """接続面数1の辺（境界辺）"""
        return int(np.count_nonzero(self.edge_incidence == 1))

    @property
    def non_manifold_edge_count(self) -> int:
        """接続面数が2を超える辺"""
        return int(np.count_nonzero(self.edge_incidence > MANIFOLD_EDGE_INCIDENCE))

    def incidence(self, a: int, b: int) -> int:
        """辺 (a, b) の接続面数（存在しなければ0）"""
        key = get_edge_key(a, b)
        pos = int(np.searchsorted(self.edge_keys, key))
        if pos < len(self.edge_keys) and self.edge_keys[pos] == key:
            return int(self.edge_incidence[pos])
        return 0

    def neighbors(self, vertex: int) -> List[int]:
        """頂点の隣接頂点（昇順）"""
        lo = self.edge_vertices[:, 0]
        hi = self.edge_vertices[:, 1]
        found = np.concatenate([hi[lo == vertex], lo[hi == vertex]])
        return sorted(int(v) for v in found)


def build_edge_index(
    positions: np.ndarray,
    triangles: np.ndarray,
    tolerance: float = DEFAULT_MERGE_TOLERANCE,
) -> EdgeIndex:
    """
    インデックスバッファから辺・頂点接続情報を構築

    Args:
        positions: 頂点座標 (N, 3)
        triangles: 三角形インデックス (M, 3)
        tolerance: 面積ゼロ判定の許容誤差

    Returns:
        EdgeIndex
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
    vertex_count = len(positions)

    degenerate = degenerate_face_mask(positions, triangles, tolerance)
    valid = triangles[~degenerate]

    vertex_face_count = np.bincount(valid.ravel(), minlength=vertex_count).astype(np.int64)

    if len(valid) == 0:
        empty = np.zeros(0, dtype=np.int64)
        return EdgeIndex(
            edge_keys=empty,
            edge_vertices=np.zeros((0, 2), dtype=np.int64),
            edge_incidence=empty,
            vertex_face_count=vertex_face_count,
            vertex_neighbor_count=np.zeros(vertex_count, dtype=np.int64),
            degenerate_face_count=int(np.count_nonzero(degenerate)),
            degenerate_mask=degenerate,
        )

    # 各面の3辺 (a,b), (b,c), (c,a)
    starts = valid.ravel()
    ends = valid[:, [1, 2, 0]].ravel()
    keys = edge_keys(starts, ends)

    unique_keys, incidence = np.unique(keys, return_counts=True)
    lo, hi = decode_edge_keys(unique_keys)

    # 一意な辺は両端点にそれぞれ異なる隣接頂点を1つずつ与える
    neighbor_count = (
        np.bincount(lo, minlength=vertex_count)
        + np.bincount(hi, minlength=vertex_count)
    ).astype(np.int64)

    return EdgeIndex(
        edge_keys=unique_keys,
        edge_vertices=np.column_stack([lo, hi]),
        edge_incidence=incidence.astype(np.int64),
        vertex_face_count=vertex_face_count,
        vertex_neighbor_count=neighbor_count,
        degenerate_face_count=int(np.count_nonzero(degenerate)),
        degenerate_mask=degenerate,
    )


# ---------------------------------------------------------------------------
# Edge -> face lists
# ---------------------------------------------------------------------------

def build_edge_face_map(triangles: Union[np.ndarray, List[List[int]]]) -> Dict[int, List[int]]:
    """辺キー -> 接続面リスト（面の出現順）"""
    edge_faces: Dict[int, List[int]] = {}
    for face_index, face in enumerate(triangles):
        n = len(face)
        for j in range(n):
            key = get_edge_key(int(face[j]), int(face[(j + 1) % n]))
            edge_faces.setdefault(key, []).append(face_index)
    return edge_faces


def excess_edge_faces(triangles: np.ndarray) -> np.ndarray:
    """接続面数が2を超える辺について、3番目以降に現れる面の番号（昇順・一意）

    面は (面番号, 辺番号) の走査順に辺へ登録され、各辺の先頭2面が残る。
    """
    triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
    if len(triangles) == 0:
        return np.zeros(0, dtype=np.int64)

    keys = edge_keys(triangles.ravel(), triangles[:, [1, 2, 0]].ravel())
    faces = np.repeat(np.arange(len(triangles), dtype=np.int64), 3)

    order = np.argsort(keys, kind="stable")
    sorted_keys = keys[order]
    group_start = np.r_[True, sorted_keys[1:] != sorted_keys[:-1]]
    start_positions = np.flatnonzero(group_start)
    group_id = np.cumsum(group_start) - 1
    rank = np.arange(len(sorted_keys)) - start_positions[group_id]

    return np.unique(faces[order][rank >= MANIFOLD_EDGE_INCIDENCE])
