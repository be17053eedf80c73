# -*- coding: utf-8 -*-
"""
stcd/storage.py
SQLite（aiosqlite）实现的 key/value blob store：
- 初始化/建表
- get_json / set_json（幂等覆盖；only_if_new=True 时只在 key 不存在时写入）
- delete_key / list_keys
- 各类记录的 key 规则

语义上只保证单 key last-write-wins，没有事务；上层（锁、合并）都是按这个假设写的。
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, Optional, Union

import aiosqlite

from stcd.utils import now_ms


# --------- 建表 SQL ---------
SCHEMA_BLOBS = """
CREATE TABLE IF NOT EXISTS blobs (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  INTEGER NOT NULL
);
"""


# --------- 初始化 ---------
async def init_db(db_path: Union[str, Path]) -> aiosqlite.Connection:
    """
    初始化数据库并返回连接。db_path 为 ":memory:" 时不落盘（测试用）。
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    # 性能相关 pragma
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    await db.execute(SCHEMA_BLOBS)
    await db.commit()
    return db


# --------- 读 ---------
async def get_json(db: aiosqlite.Connection, key: str) -> Optional[Any]:
    async with db.execute("SELECT value FROM blobs WHERE key = ?;", (key,)) as cur:
        row = await cur.fetchone()
    if row is None:
        return None
    try:
        return json.loads(row[0])
    except ValueError:
        # 坏数据当作不存在，下一次写入会覆盖
        print(f"[storage] 无法解析 {key}，按空处理")
        return None


# --------- 写 ---------
async def set_json(db: aiosqlite.Connection, key: str, value: Any, only_if_new: bool = False) -> bool:
    """
    写入 JSON。默认覆盖（last-write-wins）。
    only_if_new=True：key 已存在则什么都不做，返回 False（锁的 create-if-absent 用这个）。
    """
    body = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    if only_if_new:
        sql = """
        INSERT INTO blobs(key, value, updated_at) VALUES(?,?,?)
        ON CONFLICT(key) DO NOTHING
        """
    else:
        sql = """
        INSERT INTO blobs(key, value, updated_at) VALUES(?,?,?)
        ON CONFLICT(key) DO UPDATE SET
            value      = excluded.value,
            updated_at = excluded.updated_at
        """
    cur = await db.execute(sql, (key, body, now_ms()))
    created = cur.rowcount > 0
    await cur.close()
    await db.commit()
    return created if only_if_new else True


async def delete_key(db: aiosqlite.Connection, key: str) -> None:
    await db.execute("DELETE FROM blobs WHERE key = ?;", (key,))
    await db.commit()


async def list_keys(db: aiosqlite.Connection, prefix: str = "") -> List[str]:
    # LIKE 里的通配符要转义，key 里可能出现 '_'
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    out: List[str] = []
    async with db.execute(
        "SELECT key FROM blobs WHERE key LIKE ? ESCAPE '\\' ORDER BY key;", (escaped + "%",)
    ) as cur:
        async for row in cur:
            out.append(row[0])
    return out


# --------- key 规则 ---------
def k_state(symbol: str) -> str:
    return f"state/{symbol.upper()}.json"


def k_msgs(symbol: str, date: str) -> str:
    return f"msgs/{symbol.upper()}/{date}.json"


def k_series(symbol: str) -> str:
    return f"series/{symbol.upper()}.json"


def k_hash(hash_: str) -> str:
    return f"hash/{hash_}.json"


def k_lock(symbol: str) -> str:
    return f"lock/{symbol.upper()}.json"
