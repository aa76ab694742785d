"""事务与批量写入

Transaction: 先读后写，写入在提交时基于最新已提交状态统一应用；
读之后不可再读（写入发生后读取会抛 ReadAfterWriteError）。
WriteBatch: 无读取的批量写，commit 时原子提交。

两者的写操作数都受 MAX_WRITES_PER_COMMIT 限制。
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from ..config import MAX_WRITES_PER_COMMIT
from ..errors import ReadAfterWriteError, TransactionTooLargeError
from .refs import DocumentRef, DocumentSnapshot

if TYPE_CHECKING:
    from .document_store import SqliteDocumentStore


class WriteKind(StrEnum):
    """写操作类型"""

    SET = "set"  # 整体覆盖（不存在则创建）
    MERGE = "merge"  # 字段合并（不存在则创建）
    UPDATE = "update"  # 字段合并（不存在则失败）
    DELETE = "delete"


@dataclass(frozen=True)
class WriteOp:
    kind: WriteKind
    ref: DocumentRef
    data: dict[str, Any] = field(default_factory=dict)


class _WriteBuffer:
    """写操作缓冲区"""

    def __init__(self, limit: int = MAX_WRITES_PER_COMMIT) -> None:
        self._writes: list[WriteOp] = []
        self._limit = limit

    @property
    def writes(self) -> list[WriteOp]:
        return list(self._writes)

    def __len__(self) -> int:
        return len(self._writes)

    def _append(self, op: WriteOp) -> None:
        if len(self._writes) >= self._limit:
            raise TransactionTooLargeError(self._limit)
        self._writes.append(op)

    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        kind = WriteKind.MERGE if merge else WriteKind.SET
        self._append(WriteOp(kind=kind, ref=ref, data=dict(data)))

    def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        self._append(WriteOp(kind=WriteKind.UPDATE, ref=ref, data=dict(data)))

    def delete(self, ref: DocumentRef) -> None:
        self._append(WriteOp(kind=WriteKind.DELETE, ref=ref))


class Transaction(_WriteBuffer):
    """读写事务 -- 由 SqliteDocumentStore.transaction() 创建，持有写锁"""

    def __init__(self, store: "SqliteDocumentStore") -> None:
        super().__init__()
        self._store = store

    async def get(self, ref: DocumentRef) -> DocumentSnapshot:
        if self._writes:
            raise ReadAfterWriteError()
        return await self._store._read_snapshot(ref)

    async def get_all(self, refs: list[DocumentRef]) -> list[DocumentSnapshot]:
        """按传入顺序批量读取"""
        return [await self.get(ref) for ref in refs]


class WriteBatch(_WriteBuffer):
    """批量写入 -- commit() 时整体原子提交"""

    def __init__(self, store: "SqliteDocumentStore") -> None:
        super().__init__()
        self._store = store

    async def commit(self) -> int:
        """提交所有写操作

        Returns:
            提交的写操作数
        """
        await self._store._commit_writes(self._writes)
        return len(self._writes)
