#!/usr/bin/env python3
"""
最小シーングラフ

修復エンジンが必要とするのは「三角形ジオメトリを持つもの」だけなので、
ノードは名前・親子関係と、MeshNode の場合は差し替え可能なGeometryのみを持ちます。
"""

from typing import Iterator, List, Optional

from ..geometry.types import Geometry


class SceneNode:
    """シーングラフのノード（グループ・コンテナ）"""

    def __init__(self, name: str = ""):
        self.name = name
        self.parent: Optional["SceneNode"] = None
        self.children: List["SceneNode"] = []

    def add(self, *nodes: "SceneNode") -> "SceneNode":
        """子ノードを追加（既存の親からは切り離される）"""
        for node in nodes:
            if node.parent is not None:
                node.parent.remove(node)
            node.parent = self
            self.children.append(node)
        return self

    def remove(self, node: "SceneNode") -> bool:
        """子ノードを削除。削除できたらTrue"""
        for i, child in enumerate(self.children):
            if child is node:
                del self.children[i]
                node.parent = None
                return True
        return False

    def traverse(self) -> Iterator["SceneNode"]:
        """深さ優先（前順）で自身と全子孫を列挙"""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, children={len(self.children)})"


class MeshNode(SceneNode):
    """描画可能な三角形メッシュ"""

    def __init__(self, geometry: Optional[Geometry] = None, name: str = ""):
        super().__init__(name)
        self.geometry = geometry

    @property
    def has_geometry(self) -> bool:
        """位置属性を持つGeometryがあるか"""
        return self.geometry is not None and self.geometry.positions is not None
