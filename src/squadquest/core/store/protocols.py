"""DocumentStore Protocol 接口定义

业务服务只依赖该接口，使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Protocol, TypeVar

from .refs import DocumentRef, DocumentSnapshot
from .transaction import Transaction, WriteBatch

T = TypeVar("T")


class DocumentStore(Protocol):
    """文档存储接口

    - 读取：get / query
    - 写入：set / update / add，或 batch() 批量原子提交
    - 事务：run_transaction(body)，先读后写、失败整体回滚
    """

    def now(self) -> datetime:
        """存储当前时间"""
        ...

    async def get(self, ref: DocumentRef) -> DocumentSnapshot:
        """读取单个文档"""
        ...

    async def query(
        self,
        collection: str,
        where: list[tuple[str, str, Any]] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[DocumentSnapshot]:
        """按字段条件查询集合"""
        ...

    async def add(self, collection: str, data: dict[str, Any]) -> DocumentRef:
        """新建文档（自动生成 doc_id）"""
        ...

    async def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        """写入文档"""
        ...

    async def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        """更新已存在的文档"""
        ...

    def batch(self) -> WriteBatch:
        """创建批量写入"""
        ...

    def transaction(self) -> AbstractAsyncContextManager[Transaction]:
        """单次事务尝试"""
        ...

    async def run_transaction(self, body: Callable[[Transaction], Awaitable[T]]) -> T:
        """带重试的事务执行"""
        ...


__all__ = ["DocumentStore"]
