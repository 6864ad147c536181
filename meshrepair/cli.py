#!/usr/bin/env python3
"""
meshrepair コマンドラインツール

OBJファイルの欠陥解析・修復と、レーダー画像合成をバッチ実行します。

使用例:
    meshrepair analyze model.obj
    meshrepair repair model.obj -o fixed.obj --ensure-manifold
    meshrepair sar model.obj -o radar.png --aperture circular --samples 64
"""

import argparse
import json
from dataclasses import replace
import sys
from pathlib import Path
from typing import List, Optional
import numpy as np

from . import setup_logging, get_logger, __version__
from .config import load_config, MeshRepairConfig
from .geometry.types import GeometryError
from .geometry.repairer import IssueThresholds
from .obj.objfile import ObjParseError, parse_obj
from .obj.repairer import ObjGeometryRepairer, ObjRepairOptions, obj_to_geometry, repair_obj_file
from .sar.aperture import linear_aperture, circular_aperture
from .sar.simulation import SARConfig, SARConfigError, SARSimulator, save_image

logger = get_logger(__name__)


def create_argument_parser() -> argparse.ArgumentParser:
    """引数パーサーを作成"""
    parser = argparse.ArgumentParser(
        prog="meshrepair",
        description="三角形メッシュの多様体解析・修復ツール",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('--log-level',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default=None,
                        help='ログレベル（省略時は設定ファイルの値）')
    parser.add_argument('--config', type=Path, default=None,
                        help='YAML設定ファイル')

    subparsers = parser.add_subparsers(dest='command', required=True)

    # analyze
    analyze_parser = subparsers.add_parser('analyze', help='OBJファイルの欠陥を解析')
    analyze_parser.add_argument('input', type=Path, help='入力OBJファイル')
    analyze_parser.add_argument('--tolerance', type=float, default=None,
                                help='頂点同一判定の許容誤差')
    analyze_parser.add_argument('--json', action='store_true',
                                help='結果をJSONで出力')

    # repair
    repair_parser = subparsers.add_parser('repair', help='OBJファイルを修復')
    repair_parser.add_argument('input', type=Path, help='入力OBJファイル')
    repair_parser.add_argument('-o', '--output', type=Path, default=None,
                               help='出力OBJファイル（省略時は <name>_repaired.obj）')
    repair_parser.add_argument('--tolerance', type=float, default=None,
                               help='頂点マージの許容誤差')
    repair_parser.add_argument('--ensure-manifold', action='store_true',
                               help='欠陥が消えるまで反復修復')
    repair_parser.add_argument('--keep-loose', action='store_true',
                               help='孤立頂点を削除しない')
    repair_parser.add_argument('--keep-degenerate', action='store_true',
                               help='縮退面を削除しない')
    repair_parser.add_argument('--keep-non-manifold', action='store_true',
                               help='非多様体辺を修正しない')

    # sar
    sar_parser = subparsers.add_parser('sar', help='OBJメッシュからレーダー画像を合成')
    sar_parser.add_argument('input', type=Path, help='入力OBJファイル')
    sar_parser.add_argument('-o', '--output', type=Path, required=True,
                            help='出力画像ファイル (png等)')
    sar_parser.add_argument('--aperture', choices=['linear', 'circular'], default='circular',
                            help='センサ経路の形状')
    sar_parser.add_argument('--samples', type=int, default=None,
                            help='センサ位置の数')
    sar_parser.add_argument('--radius', type=float, default=10.0,
                            help='円形経路の半径 / 直線経路の半長')
    sar_parser.add_argument('--altitude', type=float, default=5.0,
                            help='対象中心からのセンサ高度')
    sar_parser.add_argument('--frequency', type=float, default=None,
                            help='搬送波周波数 [Hz]')

    return parser


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def run_analyze(args: argparse.Namespace, config: MeshRepairConfig) -> int:
    tolerance = args.tolerance if args.tolerance is not None else config.analysis.tolerance
    repairer = ObjGeometryRepairer(tolerance=tolerance)
    meshes = parse_obj(args.input.read_text(encoding="utf-8"))

    reports = [repairer.analyze(mesh) for mesh in meshes]
    if args.json:
        print(json.dumps([r.to_dict() for r in reports], indent=2))
    else:
        for report in reports:
            name = report.mesh_name or args.input.stem
            print(f"{name}: {report.vertex_count} vertices, {report.face_count} faces")
            for key, value in report.to_dict().items():
                if key.endswith("_count") and key not in ("vertex_count", "face_count"):
                    print(f"  {key}: {value}")
            print(f"  manifold: {'yes' if report.is_manifold else 'no'}")

    thresholds = IssueThresholds.from_config(config.repair)
    return 2 if any(thresholds.exceeded_by(r) for r in reports) else 0


def run_repair(args: argparse.Namespace, config: MeshRepairConfig) -> int:
    options = ObjRepairOptions.from_config(config.repair)
    overrides = {
        'on_progress': lambda percent, operation: logger.info(f"[{percent:3.0f}%] {operation}"),
        'ensure_manifold': args.ensure_manifold or options.ensure_manifold,
    }
    if args.tolerance is not None:
        overrides['merge_tolerance'] = args.tolerance
    if args.keep_loose:
        overrides['remove_loose_vertices'] = False
    if args.keep_degenerate:
        overrides['remove_degenerate_faces'] = False
    if args.keep_non_manifold:
        overrides['fix_non_manifold_edges'] = False
    options = replace(options, **overrides)

    results = repair_obj_file(
        args.input, args.output, options=options,
        tolerance=options.merge_tolerance,
        max_manifold_iterations=config.repair.max_manifold_iterations,
    )
    print(f"Fixed {results.total_issues_fixed} issues "
          f"(merged={results.merged_vertices}, "
          f"degenerate={results.removed_degenerate_faces}, "
          f"non_manifold={results.fixed_non_manifold_edges}, "
          f"loose={results.removed_loose_vertices})")
    return 0


def build_aperture(kind: str, center: np.ndarray, radius: float, altitude: float,
                   samples: int) -> np.ndarray:
    """CLI引数からセンサ経路を作成"""
    if kind == 'linear':
        start = center + np.array([-radius, -radius, altitude])
        end = center + np.array([radius, -radius, altitude])
        return linear_aperture(start, end, samples)
    return circular_aperture(center, radius, altitude, samples)


def run_sar(args: argparse.Namespace, config: MeshRepairConfig) -> int:
    meshes = parse_obj(args.input.read_text(encoding="utf-8"))
    geometry = obj_to_geometry(meshes[0])
    if geometry.vertex_count > 0:
        center = (geometry.positions.min(axis=0) + geometry.positions.max(axis=0)) / 2
    else:
        center = np.zeros(3)

    samples = args.samples if args.samples is not None else config.sar.aperture_samples
    path = build_aperture(args.aperture, center, args.radius, args.altitude, samples)
    sar_config = SARConfig.from_defaults(config.sar, path, target_center=center)
    if args.frequency is not None:
        sar_config.frequency = args.frequency

    image = SARSimulator(sar_config).simulate(geometry)
    save_image(image, args.output)
    print(f"Synthesized {image.pixels.shape[1]}x{image.pixels.shape[0]} image "
          f"from {image.num_positions} positions in {image.synthesis_time_ms:.1f}ms")
    return 0


COMMANDS = {
    'analyze': run_analyze,
    'repair': run_repair,
    'sar': run_sar,
}


def main(argv: Optional[List[str]] = None) -> int:
    """エントリーポイント"""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(level=args.log_level or config.log_level,
                  format_style=config.log_format_style)

    try:
        return COMMANDS[args.command](args, config)
    except (ObjParseError, GeometryError, SARConfigError) as e:
        logger.error(str(e))
        return 1
    except OSError as e:
        logger.error(f"I/O error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
