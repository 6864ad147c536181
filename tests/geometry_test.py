#!/usr/bin/env python3
"""
ジオメトリ基盤のテスト

Geometry集約型の不変条件、空間ハッシュ、辺・隣接インデックスの
各コンポーネントをテストします。
"""

import unittest
import numpy as np

# テスト対象モジュール
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from meshrepair.geometry import (
    # データ型
    Geometry, GeometryError,
    # 空間ハッシュ
    SpatialHasher, quantize, spatial_hash, count_duplicate_vertices, weld_map,
    # 辺インデックス
    get_edge_key, decode_edge_key, build_edge_index, build_edge_face_map,
    degenerate_face_mask, is_degenerate_face,
    # 修復パス
    operations
)
from meshrepair.geometry.edges import edge_keys, decode_edge_keys, excess_edge_faces
from tests.conftest import make_welded_cube, make_unwelded_cube, make_quad, make_fan_of_three


class TestGeometry(unittest.TestCase):
    """Geometry集約型テスト"""

    def test_from_buffers(self):
        """フラットバッファからの生成"""
        geometry = Geometry.from_buffers(
            positions=[0, 0, 0, 1, 0, 0, 0, 1, 0],
            uvs=[0, 0, 1, 0, 0, 1],
            indices=[0, 1, 2],
        )
        self.assertEqual(geometry.vertex_count, 3)
        self.assertEqual(geometry.face_count, 1)
        self.assertTrue(geometry.is_indexed)
        self.assertEqual(geometry.uvs.shape, (3, 2))

        buffers = geometry.to_buffers()
        self.assertEqual(buffers["positions"].shape, (9,))
        self.assertIsNone(buffers["normals"])
        np.testing.assert_array_equal(buffers["indices"], [0, 1, 2])

    def test_invalid_buffers(self):
        """不変条件違反は GeometryError"""
        with self.assertRaises(GeometryError):
            Geometry.from_buffers(positions=[0, 0, 0, 1])
        with self.assertRaises(GeometryError):
            Geometry.from_buffers(positions=[0, 0, 0, 1, 0, 0, 0, 1, 0], uvs=[0, 0, 1])
        with self.assertRaises(GeometryError):
            Geometry.from_buffers(positions=[0, 0, 0, 1, 0, 0], indices=[0, 1, 2])
        with self.assertRaises(GeometryError):
            Geometry(positions=np.zeros((3, 3)), normals=np.zeros((2, 3)))

    def test_geometry_error_is_value_error(self):
        """GeometryError は ValueError として捕捉できる"""
        with self.assertRaises(ValueError):
            Geometry(positions=np.zeros((3, 3)), indices=np.array([[0, 1, -1]]))

    def test_non_indexed_triangles(self):
        """非インデックスジオメトリの三角形ビュー"""
        geometry = make_unwelded_cube()
        self.assertFalse(geometry.is_indexed)
        self.assertEqual(geometry.vertex_count, 36)
        self.assertEqual(geometry.face_count, 12)
        np.testing.assert_array_equal(geometry.triangles()[1], [3, 4, 5])

    def test_copy_is_independent(self):
        """copy() はディープコピー"""
        geometry = make_welded_cube()
        snapshot = geometry.copy()
        geometry.positions[0, 0] = 42.0
        self.assertEqual(snapshot.positions[0, 0], 0.0)

    def test_replace(self):
        """replace() は新しいインスタンスを返す"""
        geometry = make_quad()
        normals = np.tile([0.0, 0.0, 1.0], (4, 1))
        updated = geometry.replace(normals=normals)
        self.assertIsNone(geometry.normals)
        self.assertIsNot(updated, geometry)
        np.testing.assert_array_equal(updated.normals, normals)


class TestSpatialHasher(unittest.TestCase):
    """空間ハッシュテスト"""

    def test_quantize_rounds_half_up(self):
        """グリッド座標は round-half-up"""
        q = quantize(np.array([[0.5, 1.49, -0.5]]), tolerance=1.0)
        np.testing.assert_array_equal(q, [[1, 1, 0]])

    def test_same_cell_same_hash(self):
        """同一セルの点は同一キー"""
        positions = np.array([[0.0, 0.0, 0.0], [1e-8, -1e-8, 0.0], [1.0, 0.0, 0.0]])
        keys = spatial_hash(positions, 1e-6)
        self.assertEqual(keys[0], keys[1])
        self.assertNotEqual(keys[0], keys[2])

    def test_cell_boundary_does_not_merge(self):
        """セル境界をまたぐ点は近くてもマージされない"""
        hasher = SpatialHasher(tolerance=1.0)
        self.assertFalse(hasher.same_point([0.49, 0, 0], [0.51, 0, 0]))
        self.assertTrue(hasher.same_point([0.51, 0, 0], [1.4, 0, 0]))

    def test_count_duplicates(self):
        """重複頂点数"""
        self.assertEqual(count_duplicate_vertices(make_unwelded_cube().positions), 28)
        self.assertEqual(count_duplicate_vertices(make_welded_cube().positions), 0)
        self.assertEqual(count_duplicate_vertices(np.zeros((0, 3))), 0)

    def test_weld_map_keeps_first_seen(self):
        """先に現れた頂点が残り、出現順に番号付けされる"""
        positions = np.array([
            [5.0, 0.0, 0.0],
            [0.0, 0.0, 0.0],
            [5.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [0.0, 0.0, 0.0],
        ])
        remap, survivors = weld_map(positions, 1e-6)
        np.testing.assert_array_equal(survivors, [0, 1, 3])
        np.testing.assert_array_equal(remap, [0, 1, 0, 2, 1])

    def test_invalid_tolerance(self):
        """許容誤差は正の値のみ"""
        with self.assertRaises(GeometryError):
            SpatialHasher(tolerance=0.0)
        with self.assertRaises(GeometryError):
            quantize(np.zeros((1, 3)), tolerance=-1.0)

    def test_hash_large_coordinates(self):
        """大きな座標でもキーが計算できる"""
        hasher = SpatialHasher(tolerance=1e-6)
        key = hasher.key(1e6, -1e6, 1e6)
        self.assertIsInstance(key, int)

    def test_quantize_out_of_range(self):
        """int64グリッドに収まらない座標はマージせずにエラー"""
        positions = np.array([[1e13, 0.0, 0.0], [2e13, 0.0, 0.0], [0.0, 1.0, 0.0]])
        with self.assertRaises(GeometryError):
            quantize(positions, tolerance=1e-6)
        with self.assertRaises(GeometryError):
            weld_map(np.array([[1e7, 0.0, 0.0]]), tolerance=1e-12)
        with self.assertRaises(GeometryError):
            operations.merge_vertices(Geometry(positions=positions, indices=np.array([[0, 1, 2]])))

        # 粗い許容誤差なら同じ座標を扱える
        remap, survivors = weld_map(positions, tolerance=1.0)
        self.assertEqual(len(survivors), 3)

    def test_quantize_non_finite(self):
        with self.assertRaises(GeometryError):
            quantize(np.array([[np.nan, 0.0, 0.0]]))


class TestEdgeKeys(unittest.TestCase):
    """辺キーテスト"""

    def test_edge_key_symmetry(self):
        """(a, b) と (b, a) は同じキー"""
        self.assertEqual(get_edge_key(3, 7), get_edge_key(7, 3))
        self.assertNotEqual(get_edge_key(3, 7), get_edge_key(3, 8))

    def test_decode_edge_key(self):
        """キーから (min, max) を復元"""
        self.assertEqual(decode_edge_key(get_edge_key(7, 3)), (3, 7))
        self.assertEqual(decode_edge_key(get_edge_key(0, 0)), (0, 0))

    def test_vectorized_keys_match_scalar(self):
        """ベクトル版はスカラー版と一致"""
        rng = np.random.default_rng(0)
        a = rng.integers(0, 2_000_000, size=500)
        b = rng.integers(0, 2_000_000, size=500)
        keys = edge_keys(a, b)
        self.assertEqual(int(keys[0]), get_edge_key(int(a[0]), int(b[0])))

        lo, hi = decode_edge_keys(keys)
        np.testing.assert_array_equal(lo, np.minimum(a, b))
        np.testing.assert_array_equal(hi, np.maximum(a, b))


class TestDegenerateFaces(unittest.TestCase):
    """縮退面判定テスト"""

    def setUp(self):
        self.positions = np.array([
            [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0], [0.0, 1.0, 0.0],
        ])

    def test_repeated_index(self):
        """重複インデックスの面は1面として数える"""
        mask = degenerate_face_mask(self.positions, np.array([[0, 0, 1]]))
        self.assertEqual(int(mask.sum()), 1)
        self.assertTrue(is_degenerate_face(self.positions, 0, 0, 1))

    def test_collinear(self):
        """共線の面は1面として数える"""
        mask = degenerate_face_mask(self.positions, np.array([[0, 1, 2]]))
        self.assertEqual(int(mask.sum()), 1)

    def test_valid_face(self):
        """通常の面は縮退ではない"""
        self.assertFalse(is_degenerate_face(self.positions, 0, 1, 3))

    def test_empty(self):
        mask = degenerate_face_mask(self.positions, np.zeros((0, 3), dtype=np.int64))
        self.assertEqual(mask.shape, (0,))


class TestEdgeIndex(unittest.TestCase):
    """辺・隣接インデックステスト"""

    def test_quad(self):
        """四角形: 境界辺4、内部辺1"""
        geometry = make_quad()
        index = build_edge_index(geometry.positions, geometry.indices)
        self.assertEqual(index.num_edges, 5)
        self.assertEqual(index.boundary_edge_count, 4)
        self.assertEqual(index.non_manifold_edge_count, 0)
        self.assertEqual(index.incidence(2, 0), 2)
        self.assertEqual(index.incidence(1, 3), 0)
        self.assertEqual(index.neighbors(0), [1, 2, 3])
        np.testing.assert_array_equal(index.vertex_face_count, [2, 1, 2, 1])

    def test_cube(self):
        """立方体: 全18辺が2面に接続"""
        geometry = make_welded_cube()
        index = build_edge_index(geometry.positions, geometry.indices)
        self.assertEqual(index.num_edges, 18)
        self.assertTrue(np.all(index.edge_incidence == 2))
        np.testing.assert_array_equal(index.vertex_neighbor_count, index.vertex_face_count)

    def test_fan_of_three(self):
        """3面共有辺は接続面数3"""
        geometry = make_fan_of_three()
        index = build_edge_index(geometry.positions, geometry.indices)
        self.assertEqual(index.non_manifold_edge_count, 1)
        self.assertEqual(index.incidence(0, 1), 3)

    def test_degenerate_faces_do_not_count(self):
        """縮退面は接続数に寄与しない"""
        positions = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        index = build_edge_index(positions, np.array([[0, 1, 2], [0, 0, 1]]))
        self.assertEqual(index.degenerate_face_count, 1)
        self.assertEqual(index.num_edges, 3)
        np.testing.assert_array_equal(index.vertex_face_count, [1, 1, 1])

    def test_edge_face_map_polygons(self):
        """多角形の辺 -> 面リスト"""
        edge_faces = build_edge_face_map([[0, 1, 2, 3], [0, 3, 4]])
        self.assertEqual(edge_faces[get_edge_key(3, 0)], [0, 1])
        self.assertEqual(edge_faces[get_edge_key(1, 2)], [0])
        self.assertEqual(len(edge_faces), 6)

    def test_excess_edge_faces(self):
        """各辺の先頭2面を残し、以降の面を返す"""
        triangles = make_fan_of_three().indices
        np.testing.assert_array_equal(excess_edge_faces(triangles), [2])
        np.testing.assert_array_equal(excess_edge_faces(make_welded_cube().indices), [])


if __name__ == '__main__':
    unittest.main()
