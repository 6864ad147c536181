#!/usr/bin/env python3
"""
ジオメトリ解析

空間ハッシュと辺インデックスを組み合わせて、メッシュ毎の欠陥レポートと
シーン全体の集計レポートを生成します。解析は読み取り専用で、
欠陥が見つかっても例外は送出しません。

非多様体頂点の判定は「隣接頂点数 > 接続面数 + 1」のヒューリスティックで、
頂点周りの面が単一の扇を成すかどうかの厳密な検査ではありません。
数がたまたま一致するボウタイ頂点は見逃されます。
"""

import time
from typing import Iterable, Optional, Tuple, Union
import numpy as np

from .. import get_logger
from ..constants import DEFAULT_MERGE_TOLERANCE
from .types import Geometry, DefectReport, AnalysisResult
from .hashing import count_duplicate_vertices
from .edges import build_edge_index

logger = get_logger(__name__)


class GeometryAnalyzer:
    """ジオメトリ欠陥解析器"""

    def __init__(self, tolerance: float = DEFAULT_MERGE_TOLERANCE):
        """
        初期化

        Args:
            tolerance: 重複頂点・面積ゼロ判定の許容誤差
        """
        self.tolerance = tolerance

        # パフォーマンス統計
        self.stats = {
            'total_analyses': 0,
            'total_time_ms': 0.0,
            'average_time_ms': 0.0,
            'last_num_vertices': 0,
            'last_num_faces': 0,
        }

    def analyze(
        self,
        geometry: Geometry,
        name: Optional[str] = None,
        index: Optional[int] = None,
    ) -> DefectReport:
        """
        単一ジオメトリを解析

        Args:
            geometry: 解析対象
            name: メッシュ名（レポートに記録）
            index: 走査順のメッシュ番号

        Returns:
            欠陥レポート
        """
        start_time = time.perf_counter()

        vertex_count = geometry.vertex_count
        face_count = geometry.face_count
        duplicates = count_duplicate_vertices(geometry.positions, self.tolerance)

        loose = 0
        non_manifold_edges = 0
        non_manifold_vertices = 0
        degenerate = 0
        boundary = 0

        # 非インデックスジオメトリでは辺・頂点の接続解析は行わない
        if geometry.is_indexed:
            edge_index = build_edge_index(geometry.positions, geometry.indices, self.tolerance)
            degenerate = edge_index.degenerate_face_count
            boundary = edge_index.boundary_edge_count
            non_manifold_edges = edge_index.non_manifold_edge_count

            face_counts = edge_index.vertex_face_count
            neighbor_counts = edge_index.vertex_neighbor_count
            used = face_counts > 0
            loose = int(np.count_nonzero(~used))
            non_manifold_vertices = int(
                np.count_nonzero(used & (neighbor_counts > face_counts + 1))
            )

        report = DefectReport(
            vertex_count=vertex_count,
            face_count=face_count,
            duplicate_vertex_count=duplicates,
            loose_vertex_count=loose,
            non_manifold_edge_count=non_manifold_edges,
            non_manifold_vertex_count=non_manifold_vertices,
            degenerate_face_count=degenerate,
            boundary_edge_count=boundary,
            mesh_name=name,
            mesh_index=index,
        )

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self._update_stats(elapsed_ms, vertex_count, face_count)
        return report

    def analyze_many(self, meshes: Iterable[Tuple[str, Geometry]]) -> AnalysisResult:
        """
        複数メッシュを解析して集計

        Args:
            meshes: (名前, Geometry) の列

        Returns:
            集計 + メッシュ毎の解析結果
        """
        reports = []
        for index, (name, geometry) in enumerate(meshes):
            report = self.analyze(geometry, name=name, index=index)
            reports.append(report)
            logger.info(
                f"{name}: {report.vertex_count}v, {report.face_count}f, "
                f"{report.issue_count} issues"
            )

        result = AnalysisResult.from_reports(reports)
        total = result.total
        logger.info(
            f"Total analysis: {total.mesh_count} meshes, {total.vertex_count} vertices, "
            f"{total.face_count} faces, {total.total_issues} issues"
        )
        return result

    def validate(self, target: Union[Geometry, DefectReport, AnalysisResult]) -> bool:
        """多様体検証（境界辺のみのメッシュは合格）"""
        if isinstance(target, Geometry):
            target = self.analyze(target)
        report = target.total if isinstance(target, AnalysisResult) else target

        if not report.is_manifold:
            logger.warning(
                "Geometry has manifold issues that may cause vector export problems: "
                f"non_manifold_edges={report.non_manifold_edge_count}, "
                f"non_manifold_vertices={report.non_manifold_vertex_count}, "
                f"degenerate_faces={report.degenerate_face_count}, "
                f"loose_vertices={report.loose_vertex_count}"
            )
            return False

        logger.debug("Geometry validation passed")
        return True

    def get_performance_stats(self) -> dict:
        """パフォーマンス統計を取得"""
        return self.stats.copy()

    def _update_stats(self, elapsed_ms: float, num_vertices: int, num_faces: int):
        self.stats['total_analyses'] += 1
        self.stats['total_time_ms'] += elapsed_ms
        self.stats['average_time_ms'] = self.stats['total_time_ms'] / self.stats['total_analyses']
        self.stats['last_num_vertices'] = num_vertices
        self.stats['last_num_faces'] = num_faces


# 便利関数

def analyze_geometry(
    geometry: Geometry,
    tolerance: float = DEFAULT_MERGE_TOLERANCE,
) -> DefectReport:
    """ジオメトリを解析（簡単なインターフェース）"""
    return GeometryAnalyzer(tolerance=tolerance).analyze(geometry)


def validate_manifold_geometry(
    geometry: Geometry,
    tolerance: float = DEFAULT_MERGE_TOLERANCE,
) -> bool:
    """多様体検証（簡単なインターフェース）"""
    return GeometryAnalyzer(tolerance=tolerance).validate(geometry)
