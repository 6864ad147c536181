#!/usr/bin/env python3
"""
ジオメトリ解析・修復フェーズの共通データ構造

このモジュールは、修復エンジンが扱うGeometry集約型と欠陥レポートを定義し、
モジュール間の循環参照を防ぐために使用されます。
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, Sequence, Tuple, Iterable, Dict, Any
import numpy as np


class GeometryError(ValueError):
    """ジオメトリバッファの不変条件違反"""


@dataclass(frozen=True, eq=False)
class Geometry:
    """三角形メッシュジオメトリ（不変）

    修復操作は常に新しいGeometryを生成し、既存インスタンスを書き換えない。
    属性配列 (normals / uvs) は positions と常に同じ頂点数を持つ。
    """
    positions: np.ndarray                  # 頂点座標 (N, 3)
    normals: Optional[np.ndarray] = None   # 頂点法線 (N, 3)
    uvs: Optional[np.ndarray] = None       # テクスチャ座標 (N, 2)
    indices: Optional[np.ndarray] = None   # 三角形インデックス (M, 3)

    def __post_init__(self):
        positions = _as_matrix(self.positions, 3, np.float64, "positions")
        object.__setattr__(self, "positions", positions)
        vertex_count = len(positions)

        if self.normals is not None:
            normals = _as_matrix(self.normals, 3, np.float64, "normals")
            if len(normals) != vertex_count:
                raise GeometryError(
                    f"normals count {len(normals)} != vertex count {vertex_count}"
                )
            object.__setattr__(self, "normals", normals)

        if self.uvs is not None:
            uvs = _as_matrix(self.uvs, 2, np.float64, "uvs")
            if len(uvs) != vertex_count:
                raise GeometryError(
                    f"uvs count {len(uvs)} != vertex count {vertex_count}"
                )
            object.__setattr__(self, "uvs", uvs)

        if self.indices is not None:
            indices = _as_matrix(self.indices, 3, np.int64, "indices")
            if indices.size and (indices.min() < 0 or indices.max() >= vertex_count):
                raise GeometryError(
                    f"index out of range for {vertex_count} vertices"
                )
            object.__setattr__(self, "indices", indices)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------
    @classmethod
    def from_buffers(
        cls,
        positions: Sequence[float],
        normals: Optional[Sequence[float]] = None,
        uvs: Optional[Sequence[float]] = None,
        indices: Optional[Sequence[int]] = None,
    ) -> "Geometry":
        """フラットなバッファ（x,y,z,x,y,z,...）からGeometryを生成"""
        flat_positions = np.asarray(positions, dtype=np.float64).ravel()
        if flat_positions.size % 3 != 0:
            raise GeometryError("positions length must be a multiple of 3")
        flat_normals = None
        if normals is not None:
            flat_normals = np.asarray(normals, dtype=np.float64).ravel()
            if flat_normals.size % 3 != 0:
                raise GeometryError("normals length must be a multiple of 3")
        flat_uvs = None
        if uvs is not None:
            flat_uvs = np.asarray(uvs, dtype=np.float64).ravel()
            if flat_uvs.size % 2 != 0:
                raise GeometryError("uvs length must be a multiple of 2")
        flat_indices = None
        if indices is not None:
            flat_indices = np.asarray(indices, dtype=np.int64).ravel()
            if flat_indices.size % 3 != 0:
                raise GeometryError("indices length must be a multiple of 3")

        return cls(
            positions=flat_positions.reshape(-1, 3),
            normals=None if flat_normals is None else flat_normals.reshape(-1, 3),
            uvs=None if flat_uvs is None else flat_uvs.reshape(-1, 2),
            indices=None if flat_indices is None else flat_indices.reshape(-1, 3),
        )

    def to_buffers(self) -> Dict[str, Optional[np.ndarray]]:
        """フラットなバッファ辞書に変換"""
        return {
            "positions": self.positions.ravel().copy(),
            "normals": None if self.normals is None else self.normals.ravel().copy(),
            "uvs": None if self.uvs is None else self.uvs.ravel().copy(),
            "indices": None if self.indices is None else self.indices.ravel().copy(),
        }

    def copy(self) -> "Geometry":
        """ディープコピー（スナップショット用）"""
        return Geometry(
            positions=self.positions.copy(),
            normals=None if self.normals is None else self.normals.copy(),
            uvs=None if self.uvs is None else self.uvs.copy(),
            indices=None if self.indices is None else self.indices.copy(),
        )

    def replace(self, **changes: Any) -> "Geometry":
        """指定フィールドを差し替えた新しいGeometryを返す"""
        values = {
            "positions": self.positions,
            "normals": self.normals,
            "uvs": self.uvs,
            "indices": self.indices,
        }
        values.update(changes)
        return Geometry(**values)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def is_indexed(self) -> bool:
        """インデックスバッファを持つか"""
        return self.indices is not None

    @property
    def vertex_count(self) -> int:
        """頂点数を取得"""
        return len(self.positions)

    @property
    def face_count(self) -> int:
        """三角形数を取得"""
        if self.indices is not None:
            return len(self.indices)
        return self.vertex_count // 3

    def triangles(self) -> np.ndarray:
        """三角形の頂点インデックス (M, 3) を取得

        非インデックスジオメトリでは連続する3頂点を1三角形とみなす。
        """
        if self.indices is not None:
            return self.indices
        usable = (self.vertex_count // 3) * 3
        return np.arange(usable, dtype=np.int64).reshape(-1, 3)


def _as_matrix(values, width: int, dtype, label: str) -> np.ndarray:
    array = np.asarray(values, dtype=dtype)
    if array.ndim == 1:
        if array.size % width != 0:
            raise GeometryError(f"{label} length must be a multiple of {width}")
        array = array.reshape(-1, width)
    if array.ndim != 2 or array.shape[1] != width:
        raise GeometryError(f"{label} must have shape (N, {width}), got {array.shape}")
    return np.ascontiguousarray(array)


# ---------------------------------------------------------------------------
# Defect reports
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DefectReport:
    """単一メッシュの欠陥レポート（解析ごとに新規生成される）"""
    vertex_count: int = 0
    face_count: int = 0
    duplicate_vertex_count: int = 0
    loose_vertex_count: int = 0
    non_manifold_edge_count: int = 0
    non_manifold_vertex_count: int = 0
    degenerate_face_count: int = 0
    boundary_edge_count: int = 0        # 情報のみ（欠陥ではない）
    mesh_name: Optional[str] = None
    mesh_index: Optional[int] = None

    @property
    def issue_count(self) -> int:
        """境界辺を除く欠陥総数"""
        return (
            self.duplicate_vertex_count
            + self.loose_vertex_count
            + self.non_manifold_edge_count
            + self.non_manifold_vertex_count
            + self.degenerate_face_count
        )

    @property
    def is_manifold(self) -> bool:
        """多様体検証を満たすか（境界辺は許容）"""
        return (
            self.non_manifold_edge_count == 0
            and self.non_manifold_vertex_count == 0
            and self.degenerate_face_count == 0
            and self.loose_vertex_count == 0
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AggregateDefectReport:
    """全メッシュの集計レポート"""
    mesh_count: int = 0
    vertex_count: int = 0
    face_count: int = 0
    duplicate_vertex_count: int = 0
    loose_vertex_count: int = 0
    non_manifold_edge_count: int = 0
    non_manifold_vertex_count: int = 0
    degenerate_face_count: int = 0
    boundary_edge_count: int = 0
    total_issues: int = 0

    @classmethod
    def from_reports(cls, reports: Iterable[DefectReport]) -> "AggregateDefectReport":
        """メッシュ毎のレポートを合算"""
        reports = list(reports)

        def total(attr: str) -> int:
            return sum(getattr(r, attr) for r in reports)

        return cls(
            mesh_count=len(reports),
            vertex_count=total("vertex_count"),
            face_count=total("face_count"),
            duplicate_vertex_count=total("duplicate_vertex_count"),
            loose_vertex_count=total("loose_vertex_count"),
            non_manifold_edge_count=total("non_manifold_edge_count"),
            non_manifold_vertex_count=total("non_manifold_vertex_count"),
            degenerate_face_count=total("degenerate_face_count"),
            boundary_edge_count=total("boundary_edge_count"),
            total_issues=total("issue_count"),
        )

    @property
    def is_manifold(self) -> bool:
        return (
            self.non_manifold_edge_count == 0
            and self.non_manifold_vertex_count == 0
            and self.degenerate_face_count == 0
            and self.loose_vertex_count == 0
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AnalysisResult:
    """解析結果（集計 + メッシュ毎）"""
    total: AggregateDefectReport
    meshes: Tuple[DefectReport, ...] = field(default_factory=tuple)

    @classmethod
    def from_reports(cls, reports: Iterable[DefectReport]) -> "AnalysisResult":
        reports = tuple(reports)
        return cls(total=AggregateDefectReport.from_reports(reports), meshes=reports)
