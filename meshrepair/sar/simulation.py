#!/usr/bin/env python3
"""
レーダー画像合成（SAR）

センサ経路に沿って複素反射波を加算し、レンジ圧縮（5タップ鮮鋭化）と
アジマス集束（7タップガウシアン）の2つの1次元畳み込みを適用して
グレースケール画像を生成します。収束判定や再試行はなく、1回の呼び出しで
1回だけ実行されます。

画像の行はセンサからの斜距離（センサと対象中心の距離を中央行とする）、
列は対象中心からの x 方向の位置に対応します。
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence, Tuple, Union
import numpy as np
from scipy import ndimage
import cv2

from .. import get_logger
from ..constants import (
    SPEED_OF_LIGHT,
    RANGE_COMPRESSION_KERNEL,
    AZIMUTH_FOCUS_SIGMA,
    AZIMUTH_FOCUS_TAPS,
    DEFAULT_SAR_FREQUENCY,
    DEFAULT_SAR_IMAGE_SIZE,
    DEFAULT_SAR_RESOLUTION,
    NORMAL_EPSILON,
)
from ..geometry.types import Geometry
from ..geometry.edges import face_cross_products

logger = get_logger(__name__)


class SARConfigError(ValueError):
    """レーダー合成設定エラー"""


@dataclass
class SARConfig:
    """レーダー合成設定"""
    frequency: float = DEFAULT_SAR_FREQUENCY          # 搬送波周波数 [Hz]
    aperture_path: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    target_center: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    image_width: int = DEFAULT_SAR_IMAGE_SIZE         # アジマス方向ピクセル数
    image_height: int = DEFAULT_SAR_IMAGE_SIZE        # レンジ方向ピクセル数
    range_resolution: float = DEFAULT_SAR_RESOLUTION  # 1ピクセルあたりの長さ
    azimuth_resolution: float = DEFAULT_SAR_RESOLUTION

    @property
    def wavelength(self) -> float:
        return SPEED_OF_LIGHT / self.frequency

    @classmethod
    def from_defaults(cls, defaults, aperture_path: Sequence[Sequence[float]],
                      target_center: Sequence[float] = (0.0, 0.0, 0.0)) -> "SARConfig":
        """設定ファイルの SARDefaults から構築"""
        return cls(
            frequency=defaults.frequency,
            aperture_path=np.asarray(aperture_path, dtype=np.float64).reshape(-1, 3),
            target_center=tuple(target_center),
            image_width=defaults.image_width,
            image_height=defaults.image_height,
            range_resolution=defaults.range_resolution,
            azimuth_resolution=defaults.azimuth_resolution,
        )


@dataclass
class SARImage:
    """合成結果"""
    real: np.ndarray        # (H, W) float64
    imag: np.ndarray        # (H, W) float64
    pixels: np.ndarray      # (H, W) uint8
    num_positions: int
    synthesis_time_ms: float = 0.0

    @property
    def magnitude(self) -> np.ndarray:
        return np.hypot(self.real, self.imag)


def gaussian_kernel(taps: int = AZIMUTH_FOCUS_TAPS, sigma: float = AZIMUTH_FOCUS_SIGMA) -> np.ndarray:
    """正規化済み1次元ガウシアンカーネル"""
    x = np.arange(taps, dtype=np.float64) - (taps - 1) / 2.0
    kernel = np.exp(-(x * x) / (2.0 * sigma * sigma))
    return kernel / kernel.sum()


class SARSimulator:
    """レーダー画像合成器"""

    def __init__(self, config: SARConfig):
        self.config = config
        self.range_kernel = np.asarray(RANGE_COMPRESSION_KERNEL, dtype=np.float64)
        self.azimuth_kernel = gaussian_kernel()

        self.stats = {
            'total_simulations': 0,
            'total_time_ms': 0.0,
            'last_num_positions': 0,
            'last_num_faces': 0,
        }

    def _validate(self) -> np.ndarray:
        path = np.asarray(self.config.aperture_path, dtype=np.float64).reshape(-1, 3)
        if len(path) == 0:
            raise SARConfigError("aperture path is empty")
        if self.config.frequency <= 0:
            raise SARConfigError(f"frequency must be positive, got {self.config.frequency}")
        if self.config.image_width <= 0 or self.config.image_height <= 0:
            raise SARConfigError("image resolution must be positive")
        if self.config.range_resolution <= 0 or self.config.azimuth_resolution <= 0:
            raise SARConfigError("pixel resolution must be positive")
        return path

    def _face_samples(self, geometry: Geometry) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """面中心・単位法線・面積"""
        positions = geometry.positions
        triangles = geometry.triangles()
        centers = positions[triangles].mean(axis=1)
        cross = face_cross_products(positions, triangles)
        lengths = np.linalg.norm(cross, axis=1)
        normals = np.divide(cross, lengths[:, None], out=np.zeros_like(cross),
                            where=lengths[:, None] > NORMAL_EPSILON)
        return centers, normals, 0.5 * lengths

    def _pixel_coords(self, centers: np.ndarray, distance: np.ndarray,
                      sensor: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        面中心を画像グリッドへ投影

        行 = センサからの斜距離（対象中心までの距離が中央行）、
        列 = アジマス(x)。

        Args:
            centers: 面中心 (M, 3)
            distance: 各面中心とセンサの距離 (M,)
            sensor: センサ位置 (3,)

        Returns:
            (行, 列, 画像内マスク)
        """
        cfg = self.config
        target = np.asarray(cfg.target_center, dtype=np.float64)
        reference_range = float(np.linalg.norm(sensor - target))
        cols = np.floor((centers[:, 0] - target[0]) / cfg.azimuth_resolution + cfg.image_width / 2).astype(np.int64)
        rows = np.floor((distance - reference_range) / cfg.range_resolution + cfg.image_height / 2).astype(np.int64)
        inside = (cols >= 0) & (cols < cfg.image_width) & (rows >= 0) & (rows < cfg.image_height)
        return rows, cols, inside

    def capture_return(self, geometry: Geometry, sensor: Sequence[float]) -> np.ndarray:
        """
        1つのセンサ位置からの複素反射グリッドを取得

        Args:
            geometry: 対象ジオメトリ
            sensor: センサ位置 (3,)

        Returns:
            複素グリッド (H, W)
        """
        cfg = self.config
        grid = np.zeros((cfg.image_height, cfg.image_width), dtype=np.complex128)
        if geometry.face_count == 0:
            return grid

        centers, normals, areas = self._face_samples(geometry)
        sensor = np.asarray(sensor, dtype=np.float64)
        to_sensor = sensor - centers
        distance = np.linalg.norm(to_sensor, axis=1)
        safe = np.maximum(distance, NORMAL_EPSILON)
        cos_incidence = np.einsum('ij,ij->i', normals, to_sensor) / safe
        reflectivity = np.maximum(cos_incidence, 0.0) * areas

        # 往復経路の位相
        phase = np.exp(-1j * 4.0 * np.pi * distance / cfg.wavelength)
        rows, cols, inside = self._pixel_coords(centers, distance, sensor)
        np.add.at(grid, (rows[inside], cols[inside]), (reflectivity * phase)[inside])
        return grid

    def accumulate(self, geometry: Geometry) -> np.ndarray:
        """全センサ位置の反射を加算した複素画像"""
        path = self._validate()
        image = np.zeros((self.config.image_height, self.config.image_width), dtype=np.complex128)
        for sensor in path:
            image += self.capture_return(geometry, sensor)
        return image

    def _convolve(self, image: np.ndarray, kernel: np.ndarray, axis: int) -> np.ndarray:
        real = ndimage.convolve1d(image.real, kernel, axis=axis, mode='constant')
        imag = ndimage.convolve1d(image.imag, kernel, axis=axis, mode='constant')
        return real + 1j * imag

    def range_compress(self, image: np.ndarray) -> np.ndarray:
        """レンジ方向（行軸）の鮮鋭化"""
        return self._convolve(image, self.range_kernel, axis=0)

    def azimuth_focus(self, image: np.ndarray) -> np.ndarray:
        """アジマス方向（列軸）のガウシアン集束"""
        return self._convolve(image, self.azimuth_kernel, axis=1)

    @staticmethod
    def to_grayscale(image: np.ndarray) -> np.ndarray:
        """振幅を 0..255 に正規化"""
        magnitude = np.abs(image)
        peak = float(magnitude.max()) if magnitude.size else 0.0
        if peak <= 0.0:
            return np.zeros(magnitude.shape, dtype=np.uint8)
        return np.round(magnitude / peak * 255.0).astype(np.uint8)

    def simulate(self, geometry: Geometry) -> SARImage:
        """
        レーダー画像を合成

        Args:
            geometry: 対象ジオメトリ

        Returns:
            合成画像

        Raises:
            SARConfigError: センサ経路が空、または設定値が不正
        """
        path = self._validate()
        start_time = time.perf_counter()

        image = self.accumulate(geometry)
        image = self.range_compress(image)
        image = self.azimuth_focus(image)
        pixels = self.to_grayscale(image)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.stats['total_simulations'] += 1
        self.stats['total_time_ms'] += elapsed_ms
        self.stats['last_num_positions'] = len(path)
        self.stats['last_num_faces'] = geometry.face_count

        logger.debug(f"SAR synthesis: {len(path)} positions, {geometry.face_count} faces, {elapsed_ms:.1f}ms")
        return SARImage(
            real=image.real.copy(),
            imag=image.imag.copy(),
            pixels=pixels,
            num_positions=len(path),
            synthesis_time_ms=elapsed_ms,
        )

    def get_performance_stats(self) -> dict:
        return self.stats.copy()


def save_image(image: Union[SARImage, np.ndarray], path: Union[str, Path]) -> Path:
    """グレースケール画像を保存（拡張子で形式を決定）"""
    pixels = image.pixels if isinstance(image, SARImage) else np.asarray(image, dtype=np.uint8)
    path = Path(path)
    try:
        written = cv2.imwrite(str(path), pixels)
    except cv2.error as e:
        raise IOError(f"Failed to write image: {path}: {e}") from e
    if not written:
        raise IOError(f"Failed to write image: {path}")
    logger.info(f"SAR image saved to {path}")
    return path


def simulate_sar(geometry: Geometry, aperture_path: Sequence[Sequence[float]],
                 target_center: Sequence[float] = (0.0, 0.0, 0.0),
                 **overrides) -> SARImage:
    """SARSimulator の簡易ラッパー"""
    config = SARConfig(
        aperture_path=np.asarray(aperture_path, dtype=np.float64).reshape(-1, 3),
        target_center=tuple(target_center),
        **overrides,
    )
    return SARSimulator(config).simulate(geometry)
