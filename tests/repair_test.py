#!/usr/bin/env python3
"""
ジオメトリ修復のテスト

個別の修復パス（operations）と、シーン単位のオーケストレーション
（GeometryRepairer）をテストします。
"""

import asyncio
import unittest
from unittest.mock import Mock
import numpy as np

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from meshrepair.config import RepairConfig
from meshrepair.constants import (
    REPAIR_STEP_ORDER,
    STEP_MERGE_VERTICES,
    STEP_RECALCULATE_NORMALS,
    STEP_VALIDATE_AND_REREPAIR,
    EXPORT_PATH_MANIFOLD,
    EXPORT_PATH_SILHOUETTE,
)
from meshrepair.geometry import Geometry, GeometryAnalyzer, operations
from meshrepair.geometry.repairer import (
    GeometryRepairer, RepairOptions, IssueThresholds, choose_export_path
)
from meshrepair.scene import SceneNode, MeshNode, extract_meshes
from tests.conftest import (
    make_welded_cube, make_unwelded_cube, make_quad, make_fan_of_three, make_bowtie
)


class TestRepairOperations(unittest.TestCase):
    """修復パステスト"""

    def test_merge_is_idempotent(self):
        """2回目のマージは0件"""
        first = operations.merge_vertices(make_unwelded_cube())
        self.assertEqual(first.count, 28)
        self.assertEqual(first.geometry.vertex_count, 8)
        self.assertTrue(first.geometry.is_indexed)

        second = operations.merge_vertices(first.geometry)
        self.assertEqual(second.count, 0)
        np.testing.assert_array_equal(second.geometry.indices, first.geometry.indices)

    def test_merge_keeps_attributes_aligned(self):
        """マージ後も属性配列は頂点数と一致"""
        positions = np.array([[0.0, 0, 0], [1.0, 0, 0], [0.0, 1, 0], [1.0, 0, 0]])
        uvs = np.array([[0.0, 0], [1.0, 0], [0.0, 1], [0.5, 0.5]])
        geometry = Geometry(positions=positions, uvs=uvs, indices=np.array([[0, 1, 2], [3, 2, 1]]))
        outcome = operations.merge_vertices(geometry)
        self.assertEqual(outcome.count, 1)
        self.assertEqual(outcome.geometry.uvs.shape, (3, 2))
        # 先に現れた頂点の属性が残る
        np.testing.assert_array_equal(outcome.geometry.uvs[1], [1.0, 0.0])
        np.testing.assert_array_equal(outcome.geometry.indices, [[0, 1, 2], [1, 2, 1]])

    def test_normals_stay_aligned(self):
        """マージ・孤立頂点削除後も法線は対応する頂点の行を保つ"""
        positions = np.array([[0.0, 0, 0], [1.0, 0, 0], [0.0, 1, 0], [1.0, 0, 0], [9.0, 9, 9]])
        normals = np.array([
            [0.0, 0, 1], [0.0, 1, 0], [1.0, 0, 0], [0.0, 0, -1], [0.0, -1, 0],
        ])
        geometry = Geometry(positions=positions, normals=normals, indices=np.array([[0, 1, 2], [3, 2, 1]]))

        merged = operations.merge_vertices(geometry)
        self.assertEqual(merged.count, 1)
        self.assertEqual(merged.geometry.normals.shape, (4, 3))
        np.testing.assert_array_equal(merged.geometry.normals, normals[[0, 1, 2, 4]])

        cleaned = operations.remove_loose_vertices(merged.geometry)
        self.assertEqual(cleaned.count, 1)
        np.testing.assert_array_equal(cleaned.geometry.normals, normals[[0, 1, 2]])
        np.testing.assert_array_equal(cleaned.geometry.positions, positions[[0, 1, 2]])

    def test_merge_does_not_mutate_input(self):
        geometry = make_unwelded_cube()
        operations.merge_vertices(geometry)
        self.assertEqual(geometry.vertex_count, 36)
        self.assertFalse(geometry.is_indexed)

    def test_remove_loose_conservation(self):
        """新頂点数 + 削除数 == 旧頂点数"""
        quad = make_quad()
        positions = np.vstack([[9.0, 9.0, 9.0], quad.positions, [5.0, 5.0, 5.0]])
        geometry = Geometry(positions=positions, indices=quad.indices + 1)

        outcome = operations.remove_loose_vertices(geometry)
        self.assertEqual(outcome.count, 2)
        self.assertEqual(outcome.geometry.vertex_count + outcome.count, geometry.vertex_count)
        self.assertLess(outcome.geometry.indices.max(), outcome.geometry.vertex_count)
        np.testing.assert_array_equal(outcome.geometry.positions, quad.positions)

    def test_fix_fan_of_three(self):
        """3面共有辺から1面だけ削除"""
        outcome = operations.fix_non_manifold_edges(make_fan_of_three())
        self.assertEqual(outcome.count, 1)
        self.assertEqual(outcome.geometry.face_count, 2)
        np.testing.assert_array_equal(outcome.geometry.indices, [[0, 1, 2], [0, 1, 3]])

        report = GeometryAnalyzer().analyze(outcome.geometry)
        self.assertEqual(report.non_manifold_edge_count, 0)

    def test_remove_degenerate(self):
        """縮退面は条件が重なっても1回だけ削除"""
        positions = np.array([
            [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0], [0.0, 1.0, 0.0],
        ])
        geometry = Geometry(positions=positions, indices=np.array([[0, 1, 3], [0, 0, 1], [0, 1, 2]]))
        outcome = operations.remove_degenerate_faces(geometry)
        self.assertEqual(outcome.count, 2)
        np.testing.assert_array_equal(outcome.geometry.indices, [[0, 1, 3]])

    def test_non_indexed_precondition(self):
        """インデックスが必要な操作は非インデックス入力で0件"""
        geometry = make_unwelded_cube()
        for op in (operations.remove_loose_vertices,
                   operations.fix_non_manifold_edges,
                   operations.remove_degenerate_faces):
            outcome = op(geometry)
            self.assertEqual(outcome.count, 0)
            self.assertIs(outcome.geometry, geometry)

    def test_recalculate_normals(self):
        """平面四角形の法線は +Z"""
        outcome = operations.recalculate_normals(make_quad())
        self.assertEqual(outcome.count, 1)
        np.testing.assert_allclose(outcome.geometry.normals, np.tile([0.0, 0.0, 1.0], (4, 1)))

    def test_unused_vertex_normal_is_zero(self):
        """どの面にも属さない頂点の法線はゼロ"""
        quad = make_quad()
        geometry = Geometry(positions=np.vstack([quad.positions, [3.0, 3.0, 3.0]]), indices=quad.indices)
        normals = operations.recalculate_normals(geometry).geometry.normals
        np.testing.assert_array_equal(normals[4], [0.0, 0.0, 0.0])
        np.testing.assert_allclose(np.linalg.norm(normals[:4], axis=1), 1.0)


class TestGeometryRepairer(unittest.TestCase):
    """GeometryRepairer テスト"""

    def setUp(self):
        self.root = SceneNode("root")
        self.cube_node = MeshNode(make_unwelded_cube(), name="cube")
        self.root.add(self.cube_node)
        self.repairer = GeometryRepairer()

    def test_unwelded_cube_full_repair(self):
        """独立三角形の立方体は 8頂点 / 12面 / 欠陥0 に収束"""
        results = self.repairer.repair_geometry(self.root)

        geometry = self.cube_node.geometry
        self.assertEqual(geometry.vertex_count, 8)
        self.assertEqual(geometry.face_count, 12)
        self.assertEqual(results.final_analysis.total.total_issues, 0)
        self.assertTrue(results.succeeded)
        self.assertEqual(results.repairs[STEP_MERGE_VERTICES], 28)
        self.assertEqual(results.repairs[STEP_RECALCULATE_NORMALS], 1)
        self.assertIsNotNone(geometry.normals)
        self.assertEqual(choose_export_path(results), EXPORT_PATH_MANIFOLD)

    def test_progress_reporting(self):
        """進捗は (i+1)/n*100 でステップ名と共に通知"""
        on_progress = Mock()
        self.repairer.repair_geometry(self.root, RepairOptions(on_progress=on_progress))

        calls = [c.args for c in on_progress.call_args_list]
        self.assertEqual([name for _, name in calls], list(REPAIR_STEP_ORDER))
        self.assertEqual([percent for percent, _ in calls], [20.0, 40.0, 60.0, 80.0, 100.0])

    def test_skip_operations(self):
        """スキップしたステップは実行も通知もされない"""
        progress = []
        results = self.repairer.repair_geometry(
            self.root,
            on_progress=lambda percent, name: progress.append((percent, name)),
            skip_operations=[STEP_RECALCULATE_NORMALS],
        )
        self.assertNotIn(STEP_RECALCULATE_NORMALS, results.repairs)
        self.assertEqual(len(progress), 4)
        self.assertEqual(progress[-1][0], 80.0)
        self.assertIsNone(self.cube_node.geometry.normals)

    def test_ensure_manifold_step(self):
        """ensure_manifold で反復再修復ステップが追加される"""
        names = []
        results = self.repairer.repair_geometry(
            self.root, ensure_manifold=True,
            on_progress=lambda percent, name: names.append(name),
        )
        self.assertEqual(names[-1], STEP_VALIDATE_AND_REREPAIR)
        self.assertEqual(results.repairs[STEP_VALIDATE_AND_REREPAIR], 0)
        self.assertTrue(results.succeeded)

    def test_async_repair(self):
        """非同期版も同じ結果"""
        results = asyncio.run(self.repairer.repair_geometry_async(self.root))
        self.assertTrue(results.succeeded)
        self.assertEqual(self.cube_node.geometry.vertex_count, 8)

    def test_reset_to_original(self):
        """スナップショットは最初の抽出時のもの"""
        self.repairer.repair_geometry(self.root)
        self.repairer.repair_geometry(self.root)
        restored = self.repairer.reset_to_original()

        self.assertEqual(restored, 1)
        self.assertEqual(self.cube_node.geometry.vertex_count, 36)
        self.assertFalse(self.cube_node.geometry.is_indexed)

    def test_clear_snapshots(self):
        self.repairer.repair_geometry(self.root)
        self.repairer.clear_snapshots()
        self.assertEqual(self.repairer.reset_to_original(), 0)
        self.assertEqual(self.cube_node.geometry.vertex_count, 8)

    def test_iteration_cap(self):
        """収束しない場合は上限回数で止まり警告する"""
        root = SceneNode("root")
        root.add(MeshNode(make_bowtie(), name="bowtie"))
        repairer = GeometryRepairer(max_manifold_iterations=3)

        with self.assertLogs('meshrepair.geometry.repairer', level='WARNING'):
            iterations = repairer.perform_iterative_repair(root)
        self.assertEqual(iterations, 3)

        results = repairer.ensure_manifold_geometry(root)
        self.assertFalse(results.succeeded)
        self.assertEqual(choose_export_path(results), EXPORT_PATH_SILHOUETTE)

    def test_iteration_cap_without_remaining_issues(self):
        """上限回数目の反復で解消された場合は警告しない"""
        root = SceneNode("root")
        root.add(MeshNode(make_fan_of_three(), name="fan"))
        repairer = GeometryRepairer(max_manifold_iterations=1)

        with self.assertLogs('meshrepair.geometry.repairer', level='INFO') as logs:
            iterations = repairer.perform_iterative_repair(root)
        self.assertEqual(iterations, 1)
        self.assertEqual(repairer.analyze_geometry(root).total.non_manifold_edge_count, 0)
        self.assertFalse(any(record.levelname == 'WARNING' for record in logs.records))

    def test_from_config(self):
        """RepairConfig から修復器・オプション・閾値を構築"""
        config = RepairConfig(
            merge_tolerance=1e-4,
            ensure_manifold=True,
            skip_operations=[STEP_RECALCULATE_NORMALS],
            max_manifold_iterations=5,
            max_non_manifold_edges=1,
        )
        repairer = GeometryRepairer.from_config(config)
        self.assertEqual(repairer.tolerance, 1e-4)
        self.assertEqual(repairer.max_manifold_iterations, 5)

        on_progress = Mock()
        options = RepairOptions.from_config(config, on_progress=on_progress)
        self.assertEqual(options.merge_tolerance, 1e-4)
        self.assertTrue(options.ensure_manifold)
        self.assertEqual(tuple(options.skip_operations), (STEP_RECALCULATE_NORMALS,))

        results = repairer.repair_geometry(self.root, options)
        self.assertNotIn(STEP_RECALCULATE_NORMALS, results.repairs)
        self.assertIn(STEP_VALIDATE_AND_REREPAIR, results.repairs)
        self.assertTrue(on_progress.called)

        thresholds = IssueThresholds.from_config(config)
        self.assertEqual(thresholds.max_non_manifold_edges, 1)
        fan_root = SceneNode("root")
        fan_root.add(MeshNode(make_fan_of_three(), name="fan"))
        self.assertEqual(repairer.remove_meshes_with_issues(fan_root, thresholds), 0)

    def test_fan_scene_repair(self):
        """非多様体辺の修正後に孤立した頂点は最終解析で報告される"""
        root = SceneNode("root")
        root.add(MeshNode(make_fan_of_three(), name="fan"))
        results = self.repairer.repair_geometry(root)
        self.assertEqual(results.repairs["fix_non_manifold_edges"], 1)
        self.assertEqual(results.final_analysis.total.non_manifold_edge_count, 0)
        self.assertEqual(results.final_analysis.total.loose_vertex_count, 1)

        self.repairer.remove_loose_vertices(root)
        self.assertTrue(self.repairer.validate_manifold_geometry(root))

    def test_remove_meshes_with_issues(self):
        """閾値超過メッシュと空になった親を削除"""
        root = SceneNode("root")
        group = SceneNode("group")
        group.add(MeshNode(make_fan_of_three(), name="fan"))
        root.add(group, MeshNode(make_welded_cube(), name="cube"))

        removed = self.repairer.remove_meshes_with_issues(root)
        self.assertEqual(removed, 1)
        self.assertEqual([child.name for child in root.children], ["cube"])
        self.assertIsNone(group.parent)

    def test_remove_meshes_thresholds(self):
        """閾値以下なら削除しない"""
        root = SceneNode("root")
        root.add(MeshNode(make_fan_of_three(), name="fan"))
        removed = self.repairer.remove_meshes_with_issues(
            root, IssueThresholds(max_non_manifold_edges=1)
        )
        self.assertEqual(removed, 0)
        self.assertEqual(self.repairer.remove_meshes_with_issues(root, max_non_manifold_edges=0), 1)
        self.assertEqual(extract_meshes(root), [])

    def test_analysis_results(self):
        """直近のメッシュ毎解析結果"""
        self.repairer.analyze_geometry(self.root)
        reports = self.repairer.get_analysis_results()
        self.assertEqual(len(reports), 1)
        self.assertEqual(reports[0].mesh_name, "cube")
        self.assertEqual(reports[0].duplicate_vertex_count, 28)


if __name__ == '__main__':
    unittest.main()
