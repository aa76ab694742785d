"""SqliteDocumentStore -- 基于 SQLite 的文档存储

所有事务经同一把 asyncio.Lock 串行化，并以 BEGIN IMMEDIATE 开启，
保证同一文档上的并发读改写不会丢失更新。事务内抛出的任何异常都会
回滚全部写入；SQLite 忙（database is locked）时整体重试。
"""

import asyncio
import json
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, TypeVar

import aiosqlite
import structlog
from ulid import ULID

from ..config import TRANSACTION_MAX_ATTEMPTS
from ..errors import DocumentNotFoundError, StoreUnavailableError
from .field_values import apply_changes, encode_value, to_iso
from .refs import DocumentRef, DocumentSnapshot
from .transaction import Transaction, WriteBatch, WriteKind, WriteOp

log = structlog.get_logger()

T = TypeVar("T")

# 查询操作符 -> SQL 操作符
_QUERY_OPS = {
    "==": "=",
    "!=": "!=",
    "<": "<",
    "<=": "<=",
    ">": ">",
    ">=": ">=",
}

_FIELD_PATH_RE = re.compile(r"^[A-Za-z0-9_]+(\.[A-Za-z0-9_]+)*$")


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _json_path(field_path: str) -> str:
    if not _FIELD_PATH_RE.match(field_path):
        raise ValueError(f"Invalid field path: {field_path!r}")
    return f"$.{field_path}"


def _is_busy(exc: aiosqlite.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


class SqliteDocumentStore:
    """DocumentStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        clock: Callable[[], datetime] | None = None,
        max_attempts: int = TRANSACTION_MAX_ATTEMPTS,
    ) -> None:
        self._conn = conn
        self._clock = clock or _utc_now
        self._lock = asyncio.Lock()
        self._max_attempts = max_attempts

    @property
    def conn(self) -> aiosqlite.Connection:
        return self._conn

    def now(self) -> datetime:
        """存储使用的当前时间（SERVER_TIMESTAMP 的取值来源）"""
        return self._clock()

    async def close(self) -> None:
        await self._conn.close()

    # ---- 读取 ----

    async def get(self, ref: DocumentRef) -> DocumentSnapshot:
        """读取单个文档（不存在时返回 exists=False 的快照）"""
        async with self._lock:
            try:
                return await self._read_snapshot(ref)
            except aiosqlite.Error as e:
                log.error("document_read_failed", path=ref.path, error=str(e))
                raise StoreUnavailableError() from e

    async def query(
        self,
        collection: str,
        where: list[tuple[str, str, Any]] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[DocumentSnapshot]:
        """按字段条件查询集合

        Args:
            collection: 集合路径（可以是子集合，如 "quests/Q1/members"）
            where: (字段路径, 操作符, 值) 列表，条件之间为 AND
            order_by: 排序字段路径
            descending: 是否倒序
            limit: 返回数量上限
        """
        sql = "SELECT collection, doc_id, data FROM documents WHERE collection = ?"
        params: list[Any] = [collection]

        for field_path, op, value in where or []:
            if op not in _QUERY_OPS:
                raise ValueError(f"Unsupported query operator: {op!r}")
            sql += f" AND json_extract(data, ?) {_QUERY_OPS[op]} ?"
            params.extend([_json_path(field_path), encode_value(value)])

        if order_by is not None:
            sql += " ORDER BY json_extract(data, ?)"
            sql += " DESC" if descending else " ASC"
            sql += ", doc_id ASC"
            params.append(_json_path(order_by))
        else:
            sql += " ORDER BY doc_id ASC"

        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        async with self._lock:
            try:
                cursor = await self._conn.execute(sql, params)
                rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                log.error("document_query_failed", collection=collection, error=str(e))
                raise StoreUnavailableError() from e

        return [
            DocumentSnapshot(ref=DocumentRef(row[0], row[1]), data=json.loads(row[2]))
            for row in rows
        ]

    # ---- 非事务写入 ----

    async def add(self, collection: str, data: dict[str, Any]) -> DocumentRef:
        """以自动生成的 ULID 作为 doc_id 新建文档"""
        ref = DocumentRef(collection, str(ULID()))
        await self.set(ref, data)
        return ref

    async def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        batch = self.batch()
        batch.set(ref, data, merge=merge)
        await batch.commit()

    async def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        batch = self.batch()
        batch.update(ref, data)
        await batch.commit()

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    # ---- 事务 ----

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """单次事务尝试：退出时应用缓冲写入并提交，异常时回滚"""
        async with self._lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            txn = Transaction(self)
            try:
                yield txn
                await self._apply_writes(txn.writes)
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise

    async def run_transaction(self, body: Callable[[Transaction], Awaitable[T]]) -> T:
        """执行事务函数，SQLite 忙时按次数重试

        body 内抛出的领域异常原样向上传播（事务已回滚）；
        存储层异常转换为 StoreUnavailableError。
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self.transaction() as txn:
                    result = await body(txn)
                return result
            except aiosqlite.OperationalError as e:
                if _is_busy(e) and attempt < self._max_attempts:
                    log.warning("transaction_conflict_retry", attempt=attempt, error=str(e))
                    await asyncio.sleep(0.05 * attempt)
                    continue
                log.error("transaction_failed", attempt=attempt, error=str(e))
                raise StoreUnavailableError() from e
            except aiosqlite.Error as e:
                log.error("transaction_failed", attempt=attempt, error=str(e))
                raise StoreUnavailableError() from e

        raise StoreUnavailableError("Transaction retries exhausted")

    # ---- 内部实现 ----

    async def _read(self, ref: DocumentRef) -> dict[str, Any] | None:
        cursor = await self._conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
            (ref.collection, ref.doc_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def _read_snapshot(self, ref: DocumentRef) -> DocumentSnapshot:
        return DocumentSnapshot(ref=ref, data=await self._read(ref))

    async def _commit_writes(self, writes: list[WriteOp]) -> None:
        async with self._lock:
            try:
                await self._conn.execute("BEGIN IMMEDIATE")
                try:
                    await self._apply_writes(writes)
                    await self._conn.commit()
                except Exception:
                    await self._conn.rollback()
                    raise
            except aiosqlite.Error as e:
                log.error("batch_commit_failed", writes=len(writes), error=str(e))
                raise StoreUnavailableError() from e

    async def _apply_writes(self, writes: list[WriteOp]) -> None:
        now = self._clock()
        for op in writes:
            if op.kind is WriteKind.DELETE:
                await self._delete_document(op.ref)
                continue

            current = await self._read(op.ref)
            if op.kind is WriteKind.UPDATE and current is None:
                raise DocumentNotFoundError(op.ref.path)

            base = current if current is not None and op.kind is not WriteKind.SET else {}
            await self._write_document(op.ref, apply_changes(base, op.data, now), now)

    async def _write_document(self, ref: DocumentRef, data: dict[str, Any], now: datetime) -> None:
        ts = to_iso(now)
        await self._conn.execute(
            """
            INSERT INTO documents (collection, doc_id, data, create_time, update_time)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(collection, doc_id) DO UPDATE SET
                data = excluded.data,
                update_time = excluded.update_time
            """,
            (ref.collection, ref.doc_id, json.dumps(data, ensure_ascii=False), ts, ts),
        )

    async def _delete_document(self, ref: DocumentRef) -> None:
        await self._conn.execute(
            "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
            (ref.collection, ref.doc_id),
        )
