#!/usr/bin/env python3
"""
ジオメトリ修復オーケストレーション

シーングラフから抽出したメッシュに対して修復パスを固定順で適用し、
最終解析結果を返します。

処理フロー:
1. 頂点マージ (merge_vertices)
2. 孤立頂点削除 (remove_loose_vertices)
3. 非多様体辺の修正 (fix_non_manifold_edges)
4. 縮退面削除 (remove_degenerate_faces)
5. 法線再計算 (recalculate_normals)
6. (ensure_manifold時) 反復再修復 (validate_and_rerepair)

反復再修復は収束を保証しません。上限到達は例外ではなく、
呼び出し側が最終解析結果を確認して判断します。
"""

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .. import get_logger
from ..config import RepairConfig
from ..constants import (
    DEFAULT_MERGE_TOLERANCE,
    MAX_MANIFOLD_ITERATIONS,
    STEP_MERGE_VERTICES,
    STEP_REMOVE_LOOSE_VERTICES,
    STEP_FIX_NON_MANIFOLD_EDGES,
    STEP_REMOVE_DEGENERATE_FACES,
    STEP_RECALCULATE_NORMALS,
    STEP_VALIDATE_AND_REREPAIR,
    EXPORT_PATH_MANIFOLD,
    EXPORT_PATH_SILHOUETTE,
)
from ..scene.graph import SceneNode
from ..scene.extract import MeshHandle, extract_meshes
from .types import Geometry, DefectReport, AnalysisResult
from .analyzer import GeometryAnalyzer
from . import operations

logger = get_logger(__name__)

ProgressCallback = Callable[[float, str], None]


@dataclass
class RepairOptions:
    """修復オプション"""
    merge_tolerance: float = DEFAULT_MERGE_TOLERANCE
    on_progress: Optional[ProgressCallback] = None   # (0..100, ステップ名)
    skip_operations: Sequence[str] = ()
    ensure_manifold: bool = False

    @classmethod
    def from_config(cls, config: RepairConfig,
                    on_progress: Optional[ProgressCallback] = None) -> "RepairOptions":
        """設定ファイルの RepairConfig から構築"""
        return cls(
            merge_tolerance=config.merge_tolerance,
            on_progress=on_progress,
            skip_operations=tuple(config.skip_operations),
            ensure_manifold=config.ensure_manifold,
        )


@dataclass(frozen=True)
class RepairResults:
    """修復結果（ステップ毎の件数 + 最終解析）"""
    repairs: Dict[str, int]
    final_analysis: AnalysisResult

    @property
    def succeeded(self) -> bool:
        """多様体依存のエクスポートに渡せるか"""
        return self.final_analysis.total.total_issues == 0


@dataclass
class IssueThresholds:
    """メッシュ削除判定の閾値（超えたら削除）"""
    max_duplicate_vertices: int = 0
    max_loose_vertices: int = 0
    max_non_manifold_edges: int = 0
    max_non_manifold_vertices: int = 0
    max_degenerate_faces: int = 0

    @classmethod
    def from_config(cls, config: RepairConfig) -> "IssueThresholds":
        return cls(
            max_duplicate_vertices=config.max_duplicate_vertices,
            max_loose_vertices=config.max_loose_vertices,
            max_non_manifold_edges=config.max_non_manifold_edges,
            max_non_manifold_vertices=config.max_non_manifold_vertices,
            max_degenerate_faces=config.max_degenerate_faces,
        )

    def exceeded_by(self, report: DefectReport) -> bool:
        return (
            report.duplicate_vertex_count > self.max_duplicate_vertices
            or report.loose_vertex_count > self.max_loose_vertices
            or report.non_manifold_edge_count > self.max_non_manifold_edges
            or report.non_manifold_vertex_count > self.max_non_manifold_vertices
            or report.degenerate_face_count > self.max_degenerate_faces
        )


class GeometryRepairer:
    """シーン単位のジオメトリ修復器

    抽出時に各メッシュのジオメトリのスナップショットを保持し、
    reset_to_original() で復元できる。
    """

    def __init__(self, tolerance: float = DEFAULT_MERGE_TOLERANCE,
                 max_manifold_iterations: int = MAX_MANIFOLD_ITERATIONS):
        """
        初期化

        Args:
            tolerance: 解析・縮退判定の許容誤差
            max_manifold_iterations: 反復再修復の上限
        """
        self.tolerance = tolerance
        self.max_manifold_iterations = max_manifold_iterations
        self.analyzer = GeometryAnalyzer(tolerance=tolerance)

        self._meshes: List[MeshHandle] = []
        self._originals: Dict[int, Tuple[MeshHandle, Geometry]] = {}
        self._analysis_results: Tuple[DefectReport, ...] = ()

        # パフォーマンス統計
        self.stats = {
            'total_repairs': 0,
            'total_time_ms': 0.0,
            'last_step_times_ms': {},
        }

    @classmethod
    def from_config(cls, config: RepairConfig) -> "GeometryRepairer":
        """RepairConfig の許容誤差と反復上限で初期化"""
        return cls(
            tolerance=config.merge_tolerance,
            max_manifold_iterations=config.max_manifold_iterations,
        )

    # ------------------------------------------------------------------
    # Extraction & analysis
    # ------------------------------------------------------------------
    def extract_meshes(self, root: SceneNode) -> List[MeshHandle]:
        """メッシュを抽出し、初見のメッシュのスナップショットを保存"""
        self._meshes = extract_meshes(root)
        for handle in self._meshes:
            key = id(handle.node)
            if key not in self._originals:
                self._originals[key] = (handle, handle.geometry.copy())
        logger.debug(f"Found {len(self._meshes)} meshes in the scene")
        return self._meshes

    def analyze_geometry(self, root: SceneNode) -> AnalysisResult:
        """シーン内の全メッシュを解析"""
        meshes = self.extract_meshes(root)
        result = self.analyzer.analyze_many((h.name, h.geometry) for h in meshes)
        self._analysis_results = result.meshes
        return result

    def get_analysis_results(self) -> Tuple[DefectReport, ...]:
        """直近のメッシュ毎解析結果"""
        return self._analysis_results

    def validate_manifold_geometry(self, root: SceneNode) -> bool:
        """シーンが多様体検証を満たすか"""
        return self.analyzer.validate(self.analyze_geometry(root))

    # ------------------------------------------------------------------
    # Scene-level passes
    # ------------------------------------------------------------------
    def _apply(self, root: SceneNode, label: str, fn: Callable[[Geometry], operations.RepairOutcome]) -> int:
        total = 0
        for handle in self.extract_meshes(root):
            outcome = fn(handle.geometry)
            handle.geometry = outcome.geometry
            total += outcome.count
            if outcome.count:
                logger.debug(f"{handle.name}: {label} {outcome.count}")
        logger.info(f"Total {label}: {total}")
        return total

    def merge_vertices(self, root: SceneNode, tolerance: Optional[float] = None) -> int:
        """重複頂点をマージ。マージされた頂点数を返す"""
        tol = self.tolerance if tolerance is None else tolerance
        return self._apply(root, "merged vertices",
                           lambda g: operations.merge_vertices(g, tol))

    def remove_loose_vertices(self, root: SceneNode) -> int:
        """孤立頂点を削除"""
        return self._apply(root, "removed loose vertices", operations.remove_loose_vertices)

    def fix_non_manifold_edges(self, root: SceneNode) -> int:
        """非多様体辺を修正。削除した面数を返す"""
        return self._apply(root, "removed non-manifold faces", operations.fix_non_manifold_edges)

    def remove_degenerate_faces(self, root: SceneNode) -> int:
        """縮退面を削除"""
        return self._apply(root, "removed degenerate faces",
                           lambda g: operations.remove_degenerate_faces(g, self.tolerance))

    def recalculate_normals(self, root: SceneNode) -> int:
        """法線を再計算。処理したメッシュ数を返す"""
        return self._apply(root, "meshes with recalculated normals", operations.recalculate_normals)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------
    def _operations(self, root: SceneNode, options: RepairOptions) -> List[Tuple[str, Callable[[], int]]]:
        tol = options.merge_tolerance
        steps: List[Tuple[str, Callable[[], int]]] = [
            (STEP_MERGE_VERTICES, lambda: self.merge_vertices(root, tol)),
            (STEP_REMOVE_LOOSE_VERTICES, lambda: self.remove_loose_vertices(root)),
            (STEP_FIX_NON_MANIFOLD_EDGES, lambda: self.fix_non_manifold_edges(root)),
            (STEP_REMOVE_DEGENERATE_FACES, lambda: self.remove_degenerate_faces(root)),
            (STEP_RECALCULATE_NORMALS, lambda: self.recalculate_normals(root)),
        ]
        if options.ensure_manifold:
            steps.append(
                (STEP_VALIDATE_AND_REREPAIR, lambda: self.perform_iterative_repair(root, tol))
            )
        return steps

    @staticmethod
    def _resolve_options(options: Optional[RepairOptions], overrides: dict) -> RepairOptions:
        return replace(options or RepairOptions(), **overrides)

    def _run_step(self, index: int, total: int, name: str, fn: Callable[[], int],
                  options: RepairOptions, results: Dict[str, int]) -> None:
        logger.info(f"Running {name}...")
        start = time.perf_counter()
        results[name] = int(fn())
        self.stats['last_step_times_ms'][name] = (time.perf_counter() - start) * 1000
        if options.on_progress is not None:
            options.on_progress((index + 1) * 100.0 / total, name)

    def repair_geometry(self, root: SceneNode, options: Optional[RepairOptions] = None,
                        **overrides) -> RepairResults:
        """
        全修復パスを固定順で実行

        Args:
            root: シーングラフのルート
            options: 修復オプション
            **overrides: RepairOptions のフィールドを個別指定

        Returns:
            ステップ毎の件数と最終解析結果
        """
        options = self._resolve_options(options, overrides)
        start = time.perf_counter()
        logger.info("Starting complete geometry repair process...")

        self.extract_meshes(root)
        steps = self._operations(root, options)
        skip = set(options.skip_operations)
        results: Dict[str, int] = {}

        for i, (name, fn) in enumerate(steps):
            if name in skip:
                logger.info(f"Skipping {name}")
                continue
            self._run_step(i, len(steps), name, fn, options, results)

        return self._finish(root, results, start)

    async def repair_geometry_async(self, root: SceneNode, options: Optional[RepairOptions] = None,
                                    **overrides) -> RepairResults:
        """repair_geometry と同じ処理。ステップ間でイベントループに制御を譲る"""
        options = self._resolve_options(options, overrides)
        start = time.perf_counter()
        logger.info("Starting complete geometry repair process (async)...")

        self.extract_meshes(root)
        steps = self._operations(root, options)
        skip = set(options.skip_operations)
        results: Dict[str, int] = {}

        for i, (name, fn) in enumerate(steps):
            if name in skip:
                logger.info(f"Skipping {name}")
                continue
            self._run_step(i, len(steps), name, fn, options, results)
            await asyncio.sleep(0)

        return self._finish(root, results, start)

    def _finish(self, root: SceneNode, results: Dict[str, int], start: float) -> RepairResults:
        logger.info("Complete geometry repair finished")
        final_analysis = self.analyze_geometry(root)

        self.stats['total_repairs'] += 1
        self.stats['total_time_ms'] += (time.perf_counter() - start) * 1000

        return RepairResults(repairs=results, final_analysis=final_analysis)

    def ensure_manifold_geometry(self, root: SceneNode) -> RepairResults:
        """多様体化を優先した修復（全ステップ + 反復再修復）"""
        logger.info("Ensuring manifold geometry for vector export...")
        return self.repair_geometry(root, RepairOptions(
            merge_tolerance=self.tolerance,
            skip_operations=(),
            ensure_manifold=True,
        ))

    @staticmethod
    def _has_manifold_issues(report) -> bool:
        return (
            report.non_manifold_edge_count > 0
            or report.non_manifold_vertex_count > 0
            or report.degenerate_face_count > 0
        )

    def perform_iterative_repair(self, root: SceneNode, tolerance: Optional[float] = None) -> int:
        """
        非多様体・縮退が消えるまで再修復を繰り返す

        Returns:
            実行した反復回数
        """
        tol = self.tolerance if tolerance is None else tolerance
        iterations = 0

        for iteration in range(self.max_manifold_iterations):
            if not self._has_manifold_issues(self.analyze_geometry(root).total):
                logger.info(f"Geometry is manifold after {iteration} iterations")
                return iterations

            logger.info(f"Iteration {iteration + 1}: fixing remaining issues...")
            self.remove_degenerate_faces(root)
            self.merge_vertices(root, tol)
            self.fix_non_manifold_edges(root)
            iterations += 1

        # 最後の反復で解消された場合は警告しない
        if not self._has_manifold_issues(self.analyze_geometry(root).total):
            logger.info(f"Geometry is manifold after {iterations} iterations")
        else:
            logger.warning(
                f"Manifold repair stopped after {iterations} iterations; "
                "check the final analysis before trusting the mesh"
            )
        return iterations

    # ------------------------------------------------------------------
    # Destructive cleanup
    # ------------------------------------------------------------------
    def remove_meshes_with_issues(self, root: SceneNode,
                                  thresholds: Optional[IssueThresholds] = None,
                                  **limits) -> int:
        """
        欠陥が閾値を超えるメッシュをシーンから削除

        空になった親ノードも root の手前まで遡って削除する。

        Returns:
            削除したメッシュ数
        """
        thresholds = thresholds or IssueThresholds(**limits)
        result = self.analyze_geometry(root)
        meshes = list(self._meshes)
        removed = 0

        for report, handle in zip(result.meshes, meshes):
            if not thresholds.exceeded_by(report):
                continue
            parent = handle.node.parent
            if parent is None:
                # root 自身がメッシュの場合は取り除けない
                logger.warning(f"Cannot remove root mesh \"{report.mesh_name}\"")
                continue
            parent.remove(handle.node)
            self._originals.pop(id(handle.node), None)
            removed += 1
            logger.info(
                f"Removed mesh \"{report.mesh_name}\" (Index: {report.mesh_index}) "
                "due to excessive issues"
            )
            self._remove_empty_parents(parent, root)

        logger.info(f"Removed {removed} mesh(es) with excessive issues")
        return removed

    @staticmethod
    def _remove_empty_parents(node: Optional[SceneNode], root: SceneNode) -> None:
        while node is not None and node is not root and not node.children and node.parent is not None:
            parent = node.parent
            parent.remove(node)
            logger.info(f"Removed empty parent object: {node.name or '(unnamed)'}")
            node = parent

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def reset_to_original(self) -> int:
        """全メッシュを抽出時のジオメトリに戻す。復元したメッシュ数を返す"""
        for handle, original in self._originals.values():
            handle.geometry = original.copy()
        logger.info("Reset all meshes to original geometries")
        return len(self._originals)

    def clear_snapshots(self) -> None:
        """スナップショットを破棄して新しいセッションを開始"""
        self._originals.clear()


def choose_export_path(results: RepairResults) -> str:
    """エクスポート経路の判定

    欠陥が残っていれば例外ではなく、多様体を要求しない
    シルエット抽出へフォールバックする。
    """
    if results.succeeded:
        return EXPORT_PATH_MANIFOLD
    logger.warning(
        f"{results.final_analysis.total.total_issues} issues remain after repair; "
        "falling back to silhouette extraction"
    )
    return EXPORT_PATH_SILHOUETTE
