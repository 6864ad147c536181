"""
OBJテキスト形式の読み書きと、描画コンテキスト外での修復
"""

from .objfile import ObjParseError, ObjFace, ObjMesh, parse_obj, to_obj, write_obj
from .repairer import (
    ObjGeometryRepairer,
    ObjRepairOptions,
    ObjRepairResults,
    obj_to_geometry,
    repair_obj_file
)

__all__ = [
    'ObjParseError',
    'ObjFace',
    'ObjMesh',
    'parse_obj',
    'to_obj',
    'write_obj',
    'ObjGeometryRepairer',
    'ObjRepairOptions',
    'ObjRepairResults',
    'obj_to_geometry',
    'repair_obj_file'
]
