#!/usr/bin/env python3
"""
OBJメッシュ修復

描画コンテキストを持たないバッチ変換向けに、ObjMesh（頂点リスト + 面リスト）
へ同じ5つの修復操作を適用します。ジオメトリ版とは異なり、インデックスの
付け替えは面ごとの書き換えで行い、ObjMesh はその場で更新されます。
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union
import numpy as np

from .. import get_logger
from ..config import RepairConfig
from ..constants import (
    DEFAULT_MERGE_TOLERANCE,
    MAX_MANIFOLD_ITERATIONS,
    NORMAL_EPSILON,
    MANIFOLD_EDGE_INCIDENCE,
    STEP_REMOVE_LOOSE_VERTICES,
    STEP_REMOVE_DEGENERATE_FACES,
    STEP_FIX_NON_MANIFOLD_EDGES,
)
from ..geometry.types import Geometry, DefectReport
from ..geometry.analyzer import GeometryAnalyzer
from ..geometry.hashing import weld_map
from ..geometry.edges import build_edge_face_map
from .objfile import ObjMesh, ObjFace, parse_obj, write_obj

logger = get_logger(__name__)


@dataclass
class ObjRepairOptions:
    """OBJ修復オプション"""
    merge_tolerance: Optional[float] = None     # Noneなら修復器の既定値
    remove_loose_vertices: bool = True
    remove_degenerate_faces: bool = True
    fix_non_manifold_edges: bool = True
    ensure_manifold: bool = False
    on_progress: Optional[Callable[[float, str], None]] = None

    @classmethod
    def from_config(cls, config: RepairConfig) -> "ObjRepairOptions":
        """設定ファイルの RepairConfig から構築（skip_operations のステップを無効化）"""
        skip = set(config.skip_operations)
        return cls(
            merge_tolerance=config.merge_tolerance,
            remove_loose_vertices=STEP_REMOVE_LOOSE_VERTICES not in skip,
            remove_degenerate_faces=STEP_REMOVE_DEGENERATE_FACES not in skip,
            fix_non_manifold_edges=STEP_FIX_NON_MANIFOLD_EDGES not in skip,
            ensure_manifold=config.ensure_manifold,
        )


@dataclass
class ObjRepairResults:
    """OBJ修復結果"""
    merged_vertices: int = 0
    removed_loose_vertices: int = 0
    removed_degenerate_faces: int = 0
    fixed_non_manifold_edges: int = 0
    manifold_iterations: int = 0
    total_issues_found: int = 0
    total_issues_fixed: int = 0

    def __add__(self, other: "ObjRepairResults") -> "ObjRepairResults":
        return ObjRepairResults(
            merged_vertices=self.merged_vertices + other.merged_vertices,
            removed_loose_vertices=self.removed_loose_vertices + other.removed_loose_vertices,
            removed_degenerate_faces=self.removed_degenerate_faces + other.removed_degenerate_faces,
            fixed_non_manifold_edges=self.fixed_non_manifold_edges + other.fixed_non_manifold_edges,
            manifold_iterations=self.manifold_iterations + other.manifold_iterations,
            total_issues_found=self.total_issues_found + other.total_issues_found,
            total_issues_fixed=self.total_issues_fixed + other.total_issues_fixed,
        )


def polygon_normal(points: np.ndarray) -> np.ndarray:
    """Newell法による多角形の法線（長さ = 面積の2倍）"""
    nxt = np.roll(points, -1, axis=0)
    return np.cross(points, nxt).sum(axis=0)


def triangulate_faces(faces: List[ObjFace]) -> np.ndarray:
    """多角形を扇形に三角形分割 (M, 3)"""
    triangles = [
        (face.vertices[0], face.vertices[i], face.vertices[i + 1])
        for face in faces
        for i in range(1, face.num_vertices - 1)
    ]
    return np.array(triangles, dtype=np.int64).reshape(-1, 3)


def obj_to_geometry(mesh: ObjMesh) -> Geometry:
    """ObjMesh を解析用のインデックス付きGeometryに変換"""
    return Geometry(positions=mesh.vertices, indices=triangulate_faces(mesh.faces))


def _remap_faces(faces: List[ObjFace], remap: np.ndarray) -> None:
    for face in faces:
        face.vertices = [int(remap[v]) for v in face.vertices]


class ObjGeometryRepairer:
    """OBJメッシュ修復器"""

    def __init__(self, tolerance: float = DEFAULT_MERGE_TOLERANCE,
                 max_manifold_iterations: int = MAX_MANIFOLD_ITERATIONS):
        self.tolerance = tolerance
        self.max_manifold_iterations = max_manifold_iterations
        self.analyzer = GeometryAnalyzer(tolerance=tolerance)

    # ------------------------------------------------------------------
    # Text helpers
    # ------------------------------------------------------------------
    def parse(self, text: str) -> List[ObjMesh]:
        return parse_obj(text)

    def to_obj(self, meshes: Union[ObjMesh, List[ObjMesh]]) -> str:
        if isinstance(meshes, ObjMesh):
            meshes = [meshes]
        return write_obj(meshes)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------
    def analyze(self, mesh: ObjMesh) -> DefectReport:
        """扇形三角形分割したメッシュの欠陥レポート"""
        return self.analyzer.analyze(obj_to_geometry(mesh), name=mesh.name)

    # ------------------------------------------------------------------
    # Repair operations (in place)
    # ------------------------------------------------------------------
    def merge_vertices(self, mesh: ObjMesh, tolerance: Optional[float] = None) -> int:
        """重複頂点をマージ（先に現れた頂点を残す）"""
        tol = self.tolerance if tolerance is None else tolerance
        remap, survivors = weld_map(mesh.vertices, tol)
        merged = mesh.num_vertices - len(survivors)
        mesh.vertices = mesh.vertices[survivors].copy()
        _remap_faces(mesh.faces, remap)
        return int(merged)

    def is_degenerate_face(self, face: ObjFace, vertices: np.ndarray) -> bool:
        """重複頂点または面積ゼロの面か"""
        if face.num_vertices < 3 or len(set(face.vertices)) < 3:
            return True
        normal = polygon_normal(vertices[face.vertices])
        return float(np.dot(normal, normal)) < self.tolerance * self.tolerance

    def remove_degenerate_faces(self, mesh: ObjMesh) -> int:
        """縮退面を削除"""
        valid = [f for f in mesh.faces if not self.is_degenerate_face(f, mesh.vertices)]
        removed = mesh.num_faces - len(valid)
        mesh.faces = valid
        return removed

    def fix_non_manifold_edges(self, mesh: ObjMesh) -> int:
        """3面以上が共有する辺について、先頭2面以外を削除"""
        edge_faces = build_edge_face_map([f.vertices for f in mesh.faces])
        to_remove = set()
        for face_list in edge_faces.values():
            if len(face_list) > MANIFOLD_EDGE_INCIDENCE:
                to_remove.update(face_list[MANIFOLD_EDGE_INCIDENCE:])
        mesh.faces = [f for i, f in enumerate(mesh.faces) if i not in to_remove]
        return len(to_remove)

    def remove_loose_vertices(self, mesh: ObjMesh) -> int:
        """どの面からも参照されない頂点を削除"""
        used = np.zeros(mesh.num_vertices, dtype=bool)
        for face in mesh.faces:
            used[face.vertices] = True
        survivors = np.flatnonzero(used)
        remap = np.full(mesh.num_vertices, -1, dtype=np.int64)
        remap[survivors] = np.arange(len(survivors))
        removed = mesh.num_vertices - len(survivors)
        mesh.vertices = mesh.vertices[survivors].copy()
        _remap_faces(mesh.faces, remap)
        return int(removed)

    def recalculate_normals(self, mesh: ObjMesh) -> int:
        """頂点法線を再計算し、各面の法線参照を頂点番号に揃える"""
        vertex_normals = np.zeros((mesh.num_vertices, 3), dtype=np.float64)
        for face in mesh.faces:
            if face.num_vertices < 3:
                continue
            normal = polygon_normal(mesh.vertices[face.vertices])
            length = float(np.linalg.norm(normal))
            if length > NORMAL_EPSILON:
                normal = normal / length
            np.add.at(vertex_normals, face.vertices, normal)

        lengths = np.linalg.norm(vertex_normals, axis=1, keepdims=True)
        vertex_normals = np.divide(
            vertex_normals, lengths,
            out=np.zeros_like(vertex_normals), where=lengths > NORMAL_EPSILON,
        )
        mesh.normals = vertex_normals
        for face in mesh.faces:
            face.normals = list(face.vertices)
        return 1

    @staticmethod
    def _has_manifold_issues(report: DefectReport) -> bool:
        return (
            report.non_manifold_edge_count > 0
            or report.non_manifold_vertex_count > 0
            or report.degenerate_face_count > 0
        )

    def perform_iterative_repair(self, mesh: ObjMesh, tolerance: float) -> int:
        """非多様体・縮退が消えるまで再修復（最大 max_manifold_iterations 回）"""
        iterations = 0
        for _ in range(self.max_manifold_iterations):
            if not self._has_manifold_issues(self.analyze(mesh)):
                return iterations
            self.remove_degenerate_faces(mesh)
            self.merge_vertices(mesh, tolerance)
            self.fix_non_manifold_edges(mesh)
            iterations += 1

        if self._has_manifold_issues(self.analyze(mesh)):
            logger.warning(f"OBJ manifold repair stopped after {iterations} iterations")
        return iterations

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------
    def repair_mesh(self, mesh: ObjMesh, options: Optional[ObjRepairOptions] = None) -> ObjRepairResults:
        """
        ObjMesh を修復

        Args:
            mesh: 修復対象（その場で更新される）
            options: 修復オプション

        Returns:
            修復結果
        """
        options = options or ObjRepairOptions()
        tol = self.tolerance if options.merge_tolerance is None else options.merge_tolerance
        progress = options.on_progress or (lambda percent, operation: None)
        results = ObjRepairResults()

        progress(10, "Merging duplicate vertices")
        results.merged_vertices = self.merge_vertices(mesh, tol)

        if options.remove_degenerate_faces:
            progress(30, "Removing degenerate faces")
            results.removed_degenerate_faces = self.remove_degenerate_faces(mesh)

        if options.fix_non_manifold_edges:
            progress(50, "Fixing non-manifold edges")
            results.fixed_non_manifold_edges = self.fix_non_manifold_edges(mesh)

        if options.ensure_manifold:
            results.manifold_iterations = self.perform_iterative_repair(mesh, tol)

        if options.remove_loose_vertices:
            progress(70, "Removing loose vertices")
            results.removed_loose_vertices = self.remove_loose_vertices(mesh)

        progress(90, "Recalculating normals")
        self.recalculate_normals(mesh)

        progress(100, "Geometry repair complete")
        results.total_issues_found = (
            results.merged_vertices
            + results.removed_degenerate_faces
            + results.fixed_non_manifold_edges
            + results.removed_loose_vertices
        )
        results.total_issues_fixed = results.total_issues_found
        return results

    def repair_text(self, text: str, options: Optional[ObjRepairOptions] = None) -> Tuple[str, ObjRepairResults]:
        """OBJテキストを修復して修復後のテキストを返す"""
        meshes = self.parse(text)
        total = ObjRepairResults()
        for mesh in meshes:
            total = total + self.repair_mesh(mesh, options)
        return self.to_obj(meshes), total


def repair_obj_file(
    path: Union[str, Path],
    output: Optional[Union[str, Path]] = None,
    options: Optional[ObjRepairOptions] = None,
    tolerance: float = DEFAULT_MERGE_TOLERANCE,
    max_manifold_iterations: int = MAX_MANIFOLD_ITERATIONS,
) -> ObjRepairResults:
    """
    OBJファイルを修復して書き出す

    Args:
        path: 入力OBJファイル
        output: 出力先（Noneなら <stem>_repaired.obj）
        options: 修復オプション
        tolerance: マージ許容誤差
        max_manifold_iterations: 反復再修復の上限

    Returns:
        修復結果
    """
    path = Path(path)
    output = Path(output) if output is not None else path.with_name(f"{path.stem}_repaired.obj")

    start_time = time.perf_counter()
    repairer = ObjGeometryRepairer(tolerance=tolerance, max_manifold_iterations=max_manifold_iterations)
    repaired_text, results = repairer.repair_text(path.read_text(encoding="utf-8"), options)
    output.write_text(repaired_text, encoding="utf-8")
    elapsed_ms = (time.perf_counter() - start_time) * 1000

    logger.info(f"Repaired {path.name} -> {output.name} in {elapsed_ms:.1f}ms")
    if results.total_issues_fixed > 0:
        logger.info(f"Fixed {results.total_issues_fixed} geometry issues:")
        if results.merged_vertices:
            logger.info(f"- Merged {results.merged_vertices} duplicate vertices")
        if results.removed_degenerate_faces:
            logger.info(f"- Removed {results.removed_degenerate_faces} degenerate faces")
        if results.fixed_non_manifold_edges:
            logger.info(f"- Fixed {results.fixed_non_manifold_edges} non-manifold edges")
        if results.removed_loose_vertices:
            logger.info(f"- Removed {results.removed_loose_vertices} loose vertices")
    return results
