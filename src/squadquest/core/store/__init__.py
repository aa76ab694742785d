"""SquadQuest Core Store -- SQLite 文档存储实现

提供工厂函数创建文档存储实例。
"""

from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import aiosqlite

from .document_store import SqliteDocumentStore
from .field_values import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    Increment,
    to_iso,
)
from .protocols import DocumentStore
from .refs import DocumentRef, DocumentSnapshot
from .sqlite_init import SCHEMA_VERSION, init_db, verify_wal_mode
from .transaction import Transaction, WriteBatch


async def create_document_store(
    db_path: str,
    clock: Callable[[], datetime] | None = None,
) -> SqliteDocumentStore:
    """创建文档存储

    Args:
        db_path: SQLite 数据库文件路径（":memory:" 为内存库）
        clock: 可选的时钟函数，测试中用于注入固定时间

    Returns:
        SqliteDocumentStore 实例
    """
    if db_path != ":memory:":
        # 确保数据库目录存在
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    # 事务由 store 显式 BEGIN IMMEDIATE 管理
    conn = await aiosqlite.connect(db_path, isolation_level=None)
    await init_db(conn)

    return SqliteDocumentStore(conn, clock=clock)


__all__ = [
    "ArrayRemove",
    "ArrayUnion",
    "DELETE_FIELD",
    "DocumentRef",
    "DocumentSnapshot",
    "DocumentStore",
    "Increment",
    "SCHEMA_VERSION",
    "SERVER_TIMESTAMP",
    "SqliteDocumentStore",
    "Transaction",
    "WriteBatch",
    "create_document_store",
    "init_db",
    "to_iso",
    "verify_wal_mode",
]
