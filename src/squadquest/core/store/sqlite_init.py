"""SQLite 数据库初始化

所有集合（含子集合）共用一张 documents 表，文档内容以 JSON 文本存储，
集合路径形如 "quests" 或 "quests/{id}/members"。
"""

import aiosqlite

# documents 表结构变更时递增，写入 PRAGMA user_version
SCHEMA_VERSION = 1

_PRAGMAS = (
    "PRAGMA journal_mode = WAL;",
    "PRAGMA synchronous = NORMAL;",
    "PRAGMA busy_timeout = 5000;",
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        collection   TEXT NOT NULL,
        doc_id       TEXT NOT NULL,
        data         TEXT NOT NULL DEFAULT '{}',
        create_time  TEXT NOT NULL,
        update_time  TEXT NOT NULL,
        PRIMARY KEY (collection, doc_id)
    );
    """,
    # 归档扫描与周榜查询都按集合 + JSON 字段过滤
    "CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection);",
    (
        "CREATE INDEX IF NOT EXISTS idx_documents_status_updated ON documents("
        "collection, json_extract(data, '$.status'), json_extract(data, '$.updatedAt'));"
    ),
)


async def init_db(conn: aiosqlite.Connection) -> None:
    """设置 PRAGMA、建表建索引，并记录 schema 版本"""
    for pragma in _PRAGMAS:
        await conn.execute(pragma)
    for statement in _SCHEMA:
        await conn.execute(statement)
    await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")
    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
