#!/usr/bin/env python3
"""
meshrepair 設定管理システム

解析・修復・レーダー合成で使用される設定値を統一管理し、
Magic Numberのハードコーディングを解消します。
"""

import yaml
from dataclasses import dataclass, field, fields, asdict
from typing import Optional, Dict, Any, List
from pathlib import Path

from . import get_logger
from .constants import (
    DEFAULT_MERGE_TOLERANCE,
    MAX_MANIFOLD_ITERATIONS,
    DEFAULT_SAR_FREQUENCY,
    DEFAULT_SAR_IMAGE_SIZE,
    DEFAULT_SAR_RESOLUTION,
)

logger = get_logger(__name__)


@dataclass
class AnalysisConfig:
    """解析設定"""
    tolerance: float = DEFAULT_MERGE_TOLERANCE


@dataclass
class RepairConfig:
    """修復パイプライン設定"""
    merge_tolerance: float = DEFAULT_MERGE_TOLERANCE
    ensure_manifold: bool = False
    skip_operations: List[str] = field(default_factory=list)
    max_manifold_iterations: int = MAX_MANIFOLD_ITERATIONS

    # メッシュ削除の閾値（remove_meshes_with_issues）
    max_duplicate_vertices: int = 0
    max_loose_vertices: int = 0
    max_non_manifold_edges: int = 0
    max_non_manifold_vertices: int = 0
    max_degenerate_faces: int = 0


@dataclass
class SARDefaults:
    """レーダー画像合成の既定値"""
    frequency: float = DEFAULT_SAR_FREQUENCY
    image_width: int = DEFAULT_SAR_IMAGE_SIZE
    image_height: int = DEFAULT_SAR_IMAGE_SIZE
    range_resolution: float = DEFAULT_SAR_RESOLUTION
    azimuth_resolution: float = DEFAULT_SAR_RESOLUTION
    aperture_samples: int = 64


@dataclass
class MeshRepairConfig:
    """プロジェクト全体設定"""
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    repair: RepairConfig = field(default_factory=RepairConfig)
    sar: SARDefaults = field(default_factory=SARDefaults)

    # ログ設定
    log_level: str = "INFO"
    log_format_style: str = "detailed"


_SECTIONS = ("analysis", "repair", "sar")


class ConfigManager:
    """設定管理クラス"""

    def __init__(self):
        self._config: Optional[MeshRepairConfig] = None
        self._config_file_path: Optional[Path] = None

    def load_config(self, config_file: Optional[Path] = None) -> MeshRepairConfig:
        """
        設定ファイルを読み込み

        Args:
            config_file: 設定ファイルパス（Noneの場合は既定の場所を探索）

        Returns:
            読み込まれた設定
        """
        if config_file is None:
            default_paths = [
                Path.cwd() / "meshrepair.yaml",
                Path.home() / ".meshrepair" / "config.yaml",
            ]
            for path in default_paths:
                if path.exists():
                    config_file = path
                    break

        if config_file and Path(config_file).exists():
            config_file = Path(config_file)
            try:
                with open(config_file, 'r', encoding='utf-8') as f:
                    config_dict = yaml.safe_load(f) or {}

                self._config = self._dict_to_config(config_dict)
                self._config_file_path = config_file
                logger.info(f"Configuration loaded from {config_file}")

            except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
                logger.warning(f"Failed to load config from {config_file}: {e}")
                logger.info("Using default configuration")
                self._config = MeshRepairConfig()
        else:
            logger.info("No config file found, using default configuration")
            self._config = MeshRepairConfig()

        return self._config

    def save_config(self, config_file: Optional[Path] = None) -> bool:
        """
        設定をファイルに保存

        Args:
            config_file: 保存先ファイルパス

        Returns:
            保存成功したかどうか
        """
        if self._config is None:
            logger.error("No configuration to save")
            return False

        if config_file is None:
            config_file = self._config_file_path or Path("meshrepair.yaml")
        config_file = Path(config_file)

        try:
            config_dict = asdict(self._config)
            config_file.parent.mkdir(parents=True, exist_ok=True)

            with open(config_file, 'w', encoding='utf-8') as f:
                yaml.safe_dump(config_dict, f, default_flow_style=False,
                               allow_unicode=True, indent=2)

            logger.info(f"Configuration saved to {config_file}")
            return True

        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to save config to {config_file}: {e}")
            return False

    def get_config(self) -> MeshRepairConfig:
        """現在の設定を取得"""
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def set_config(self, config: MeshRepairConfig) -> None:
        """設定を差し替え"""
        self._config = config

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> MeshRepairConfig:
        """辞書を設定オブジェクトに変換（未知のキーは無視）"""
        if not isinstance(config_dict, dict):
            raise TypeError("configuration root must be a mapping")

        config = MeshRepairConfig()

        for section in _SECTIONS:
            section_dict = config_dict.get(section)
            if isinstance(section_dict, dict):
                target = getattr(config, section)
                known = {f.name for f in fields(target)}
                for key, value in section_dict.items():
                    if key in known:
                        setattr(target, key, value)
                    else:
                        logger.debug(f"Ignoring unknown config key: {section}.{key}")

        for key in ("log_level", "log_format_style"):
            if key in config_dict:
                setattr(config, key, config_dict[key])

        return config


# グローバル設定マネージャー
_config_manager: Optional[ConfigManager] = None

def get_config_manager() -> ConfigManager:
    """グローバル設定マネージャーを取得"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager

def get_config() -> MeshRepairConfig:
    """現在の設定を取得"""
    return get_config_manager().get_config()

def load_config(config_file: Optional[Path] = None) -> MeshRepairConfig:
    """設定を読み込み"""
    return get_config_manager().load_config(config_file)

def save_config(config_file: Optional[Path] = None) -> bool:
    """設定を保存"""
    return get_config_manager().save_config(config_file)
