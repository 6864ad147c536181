"""
レーダー画像合成パイプライン

センサ経路 (aperture.py) に沿った反射波の加算と、固定フィルタバンクによる
画像化 (simulation.py) を提供します。
"""

from .aperture import linear_aperture, circular_aperture
from .simulation import (
    SARConfig,
    SARConfigError,
    SARImage,
    SARSimulator,
    gaussian_kernel,
    save_image,
    simulate_sar
)

__all__ = [
    'linear_aperture',
    'circular_aperture',
    'SARConfig',
    'SARConfigError',
    'SARImage',
    'SARSimulator',
    'gaussian_kernel',
    'save_image',
    'simulate_sar'
]
