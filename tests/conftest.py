#!/usr/bin/env python3
"""
pytest共通設定とフィクスチャ

テスト実行時の共通ロギング設定と、解析・修復テストで繰り返し使う
サンプルメッシュ（立方体・四角形・3枚扇など）を提供します。
"""

import pytest
import sys
import os
import tempfile
from typing import Generator
import numpy as np

# パッケージのパス追加
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from meshrepair import setup_logging, get_logger
from meshrepair.geometry.types import Geometry

# =============================================================================
# テストロギング設定
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """テスト全体のロギング設定"""
    setup_logging(level="DEBUG")
    logger = get_logger("test")
    logger.info("=== テストセッション開始 ===")
    yield
    logger.info("=== テストセッション終了 ===")


@pytest.fixture
def test_logger():
    """テスト用ロガー"""
    return get_logger("test")


# =============================================================================
# サンプルメッシュ生成
# =============================================================================

CUBE_POSITIONS = np.array([
    [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0],
    [0.0, 0.0, 1.0], [1.0, 0.0, 1.0], [1.0, 1.0, 1.0], [0.0, 1.0, 1.0],
])

# 外向きの巻き方向
CUBE_TRIANGLES = np.array([
    [0, 2, 1], [0, 3, 2],   # z=0
    [4, 5, 6], [4, 6, 7],   # z=1
    [0, 1, 5], [0, 5, 4],   # y=0
    [2, 3, 7], [2, 7, 6],   # y=1
    [0, 4, 7], [0, 7, 3],   # x=0
    [1, 2, 6], [1, 6, 5],   # x=1
])


def make_welded_cube() -> Geometry:
    """8頂点・12三角形の閉じた立方体"""
    return Geometry(positions=CUBE_POSITIONS.copy(), indices=CUBE_TRIANGLES.copy())


def make_unwelded_cube() -> Geometry:
    """12枚の独立三角形（36頂点・インデックスなし）の立方体"""
    return Geometry(positions=CUBE_POSITIONS[CUBE_TRIANGLES].reshape(-1, 3))


def make_quad() -> Geometry:
    """対角線を共有する2三角形の平面四角形"""
    positions = np.array([
        [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0],
    ])
    return Geometry(positions=positions, indices=np.array([[0, 1, 2], [0, 2, 3]]))


def make_fan_of_three() -> Geometry:
    """辺 (0, 1) を3枚の三角形が共有する非多様体メッシュ"""
    positions = np.array([
        [0.0, 0.0, 0.0], [1.0, 0.0, 0.0],
        [0.5, 1.0, 0.0], [0.5, -1.0, 0.0], [0.5, 0.0, 1.0],
    ])
    return Geometry(positions=positions, indices=np.array([[0, 1, 2], [0, 1, 3], [0, 1, 4]]))


def make_bowtie() -> Geometry:
    """頂点0だけを共有する2三角形（非多様体頂点）"""
    positions = np.array([
        [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0],
        [-1.0, 0.0, 0.0], [-1.0, -1.0, 0.0],
    ])
    return Geometry(positions=positions, indices=np.array([[0, 1, 2], [0, 3, 4]]))


def cube_obj_text(welded: bool = False, name: str = "cube") -> str:
    """立方体のOBJテキスト"""
    lines = ["# test cube", f"o {name}"]
    if welded:
        lines += [f"v {x} {y} {z}" for x, y, z in CUBE_POSITIONS]
        lines += [f"f {a + 1} {b + 1} {c + 1}" for a, b, c in CUBE_TRIANGLES]
    else:
        for tri in CUBE_TRIANGLES:
            lines += [f"v {x} {y} {z}" for x, y, z in CUBE_POSITIONS[tri]]
        lines += [f"f {3 * i + 1} {3 * i + 2} {3 * i + 3}" for i in range(len(CUBE_TRIANGLES))]
    return "\n".join(lines) + "\n"


# =============================================================================
# テストデータフィクスチャ
# =============================================================================

@pytest.fixture
def welded_cube() -> Geometry:
    return make_welded_cube()


@pytest.fixture
def unwelded_cube() -> Geometry:
    return make_unwelded_cube()


@pytest.fixture
def quad_geometry() -> Geometry:
    return make_quad()


@pytest.fixture
def fan_geometry() -> Geometry:
    return make_fan_of_three()


@pytest.fixture
def temp_directory() -> Generator[str, None, None]:
    """一時ディレクトリ"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir
