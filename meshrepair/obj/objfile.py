#!/usr/bin/env python3
"""
OBJテキスト形式の読み書き

行指向の3D交換フォーマット (v / vn / vt / f) を、シーングラフに依存しない
素朴な頂点リスト + 面リスト表現に変換します。ファイル内のインデックスは
1始まり、内部表現は0始まりです。
"""

from dataclasses import dataclass, field
from typing import List, Optional, Iterable
import numpy as np

from .. import get_logger

logger = get_logger(__name__)


class ObjParseError(ValueError):
    """OBJテキストの解析エラー"""

    def __init__(self, message: str, line_number: Optional[int] = None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


@dataclass
class ObjFace:
    """多角形面（0始まりインデックス）"""
    vertices: List[int]
    uvs: Optional[List[int]] = None      # vt インデックス
    normals: Optional[List[int]] = None  # vn インデックス

    @property
    def num_vertices(self) -> int:
        return len(self.vertices)


@dataclass
class ObjMesh:
    """OBJメッシュデータ"""
    vertices: np.ndarray                        # 頂点座標 (N, 3)
    faces: List[ObjFace] = field(default_factory=list)
    normals: Optional[np.ndarray] = None        # vn (K, 3)
    uvs: Optional[np.ndarray] = None            # vt (L, 2)
    name: Optional[str] = None

    @property
    def num_vertices(self) -> int:
        return len(self.vertices)

    @property
    def num_faces(self) -> int:
        return len(self.faces)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _parse_floats(parts: List[str], count: int, line_number: int, label: str) -> List[float]:
    if len(parts) < count:
        raise ObjParseError(f"'{label}' needs {count} values, got {len(parts)}", line_number)
    try:
        return [float(p) for p in parts[:count]]
    except ValueError as exc:
        raise ObjParseError(f"invalid number in '{label}' line: {exc}", line_number) from exc


def _resolve_index(token: str, count: int, line_number: int, label: str) -> int:
    try:
        raw = int(token)
    except ValueError as exc:
        raise ObjParseError(f"invalid {label} index '{token}'", line_number) from exc
    if raw == 0:
        raise ObjParseError(f"{label} index 0 is not valid (indices are 1-based)", line_number)
    # 負のインデックスは直近の要素からの相対指定
    index = raw - 1 if raw > 0 else count + raw
    if not 0 <= index < count:
        raise ObjParseError(f"{label} index {raw} out of range ({count} defined)", line_number)
    return index


def parse_obj(text: str) -> List[ObjMesh]:
    """
    OBJテキストを解析

    Args:
        text: OBJファイルの内容

    Returns:
        メッシュのリスト（ファイル全体を1メッシュとして返す）
    """
    vertices: List[List[float]] = []
    normals: List[List[float]] = []
    uvs: List[List[float]] = []
    faces: List[ObjFace] = []
    name: Optional[str] = None
    skipped_faces = 0

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        parts = line.split()
        tag, args = parts[0], parts[1:]

        if tag == "v":
            vertices.append(_parse_floats(args, 3, line_number, "v"))
        elif tag == "vn":
            normals.append(_parse_floats(args, 3, line_number, "vn"))
        elif tag == "vt":
            # vt u [v [w]] : w は無視
            values = _parse_floats(args, 1, line_number, "vt")
            if len(args) >= 2:
                values = _parse_floats(args, 2, line_number, "vt")
            else:
                values.append(0.0)
            uvs.append(values)
        elif tag == "f":
            face = _parse_face(args, len(vertices), len(uvs), len(normals), line_number)
            if face is None:
                skipped_faces += 1
            else:
                faces.append(face)
        elif tag in ("o", "g") and name is None and args:
            name = " ".join(args)

    if skipped_faces:
        logger.info(f"Skipped {skipped_faces} faces with fewer than 3 vertices")

    return [
        ObjMesh(
            vertices=np.array(vertices, dtype=np.float64).reshape(-1, 3),
            faces=faces,
            normals=np.array(normals, dtype=np.float64).reshape(-1, 3) if normals else None,
            uvs=np.array(uvs, dtype=np.float64).reshape(-1, 2) if uvs else None,
            name=name,
        )
    ]


def _parse_face(tokens: List[str], num_v: int, num_vt: int, num_vn: int,
                line_number: int) -> Optional[ObjFace]:
    face_vertices: List[int] = []
    face_uvs: List[int] = []
    face_normals: List[int] = []

    for token in tokens:
        refs = token.split("/")
        face_vertices.append(_resolve_index(refs[0], num_v, line_number, "vertex"))
        if len(refs) > 1 and refs[1]:
            face_uvs.append(_resolve_index(refs[1], num_vt, line_number, "texture"))
        if len(refs) > 2 and refs[2]:
            face_normals.append(_resolve_index(refs[2], num_vn, line_number, "normal"))

    if len(face_vertices) < 3:
        return None

    # 全頂点が揃っている場合のみ属性参照を保持する
    return ObjFace(
        vertices=face_vertices,
        uvs=face_uvs if len(face_uvs) == len(face_vertices) else None,
        normals=face_normals if len(face_normals) == len(face_vertices) else None,
    )


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def _fmt(value: float) -> str:
    return repr(float(value))


def _face_token(face: ObjFace, i: int) -> str:
    v = face.vertices[i] + 1
    if face.uvs is not None and face.normals is not None:
        return f"{v}/{face.uvs[i] + 1}/{face.normals[i] + 1}"
    if face.uvs is not None:
        return f"{v}/{face.uvs[i] + 1}"
    if face.normals is not None:
        return f"{v}//{face.normals[i] + 1}"
    return str(v)


def to_obj(mesh: ObjMesh) -> str:
    """メッシュをOBJテキストに変換（1始まりで再番号付け）"""
    lines: List[str] = []
    if mesh.name:
        lines.append(f"o {mesh.name}")

    for x, y, z in mesh.vertices:
        lines.append(f"v {_fmt(x)} {_fmt(y)} {_fmt(z)}")

    if mesh.normals is not None:
        for x, y, z in mesh.normals:
            lines.append(f"vn {_fmt(x)} {_fmt(y)} {_fmt(z)}")

    if mesh.uvs is not None:
        for u, v in mesh.uvs:
            lines.append(f"vt {_fmt(u)} {_fmt(v)}")

    for face in mesh.faces:
        tokens = " ".join(_face_token(face, i) for i in range(face.num_vertices))
        lines.append(f"f {tokens}")

    return "\n".join(lines) + "\n"


def write_obj(meshes: Iterable[ObjMesh]) -> str:
    """複数メッシュを1つのOBJテキストに連結

    2つ目以降のメッシュのインデックスは先行メッシュの要素数だけずらす。
    """
    chunks: List[str] = []
    v_offset = vt_offset = vn_offset = 0

    for mesh in meshes:
        shifted = ObjMesh(
            vertices=mesh.vertices,
            normals=mesh.normals,
            uvs=mesh.uvs,
            name=mesh.name,
            faces=[
                ObjFace(
                    vertices=[v + v_offset for v in face.vertices],
                    uvs=None if face.uvs is None else [t + vt_offset for t in face.uvs],
                    normals=None if face.normals is None else [n + vn_offset for n in face.normals],
                )
                for face in mesh.faces
            ],
        )
        chunks.append(to_obj(shifted))
        v_offset += mesh.num_vertices
        vt_offset += 0 if mesh.uvs is None else len(mesh.uvs)
        vn_offset += 0 if mesh.normals is None else len(mesh.normals)

    return "".join(chunks)
