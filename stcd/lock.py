# -*- coding: utf-8 -*-
"""
stcd/lock.py
每个 symbol 一把建议锁（lock/{SYM}.json = {symbol, acquired_at}）。

- acquire：不存在则创建；存在且未过期 -> LockContention（调用方直接放弃）；
  存在但超过 stale 时间 -> 先删再建
- release：尽力删除，出错只打印

创建走 INSERT ... ON CONFLICT DO NOTHING，同时创建只有一个能成功。
接管过期锁时先删再建，这一步仍可能和另一个接管者交错；
按 id 合并是幂等的，最坏结果是重复劳动，不会写坏数据。
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import aiosqlite

from stcd.errors import LockContention
from stcd.storage import delete_key, get_json, k_lock, set_json
from stcd.utils import parse_iso, to_iso, utc_now

LOCK_STALE = timedelta(minutes=10)


async def acquire_lock(
    db: aiosqlite.Connection,
    symbol: str,
    stale_after: timedelta = LOCK_STALE,
    now: Optional[datetime] = None,
) -> None:
    now = now or utc_now()
    key = k_lock(symbol)
    existing = await get_json(db, key)
    if isinstance(existing, dict):
        acquired_at = parse_iso(existing.get("acquired_at"))
        if acquired_at is not None:
            age = now - acquired_at
            if age < stale_after:
                raise LockContention(symbol, age.total_seconds())
        print(f"[lock] {symbol} 旧锁已过期（{existing.get('acquired_at')}），强制接管")
        await delete_key(db, key)

    created = await set_json(db, key, {"symbol": symbol, "acquired_at": to_iso(now)}, only_if_new=True)
    if not created:
        # 读和写之间被别的进程抢先建了锁
        raise LockContention(symbol)


async def release_lock(db: aiosqlite.Connection, symbol: str) -> None:
    try:
        await delete_key(db, k_lock(symbol))
    except Exception as e:
        print(f"[lock] {symbol} 释放锁失败（过期后自动失效）: {e!r}")
