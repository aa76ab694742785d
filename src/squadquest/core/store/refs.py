"""文档引用与快照

文档以 (collection, doc_id) 定位；子集合的 collection 形如
"quests/{quest_id}/members"，与父文档互相独立存储。
"""

import copy
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class DocumentRef:
    """文档引用"""

    collection: str
    doc_id: str

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.doc_id}"

    def subcollection(self, name: str) -> str:
        """子集合路径"""
        return f"{self.path}/{name}"

    def child(self, name: str, doc_id: str) -> "DocumentRef":
        """子集合中的文档引用"""
        return DocumentRef(self.subcollection(name), doc_id)


@dataclass(frozen=True)
class DocumentSnapshot:
    """某一时刻读取到的文档内容（data 为 None 表示文档不存在）"""

    ref: DocumentRef
    data: dict[str, Any] | None

    @property
    def id(self) -> str:
        return self.ref.doc_id

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> dict[str, Any]:
        """返回数据副本，不存在时返回空字典"""
        return copy.deepcopy(self.data) if self.data is not None else {}

    def get(self, field_path: str, default: Any = None) -> Any:
        """按点分路径读取字段，如 "feedbackCounts.leader" """
        node: Any = self.data
        for part in field_path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node
