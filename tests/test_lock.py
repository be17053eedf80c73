# -*- coding: utf-8 -*-
"""
tests/test_lock.py
每个 symbol 的建议锁：占用时拒绝、过期接管、释放、并发创建只有一个成功。
"""
import asyncio
from datetime import timedelta

import pytest

from stcd.errors import LockContention
from stcd.lock import LOCK_STALE, acquire_lock, release_lock
from stcd.storage import get_json, init_db, k_lock, set_json
from stcd.utils import to_iso

from fakes import T0


async def _contention_async(db_path):
    db = await init_db(db_path)
    try:
        await acquire_lock(db, "RCAT", LOCK_STALE, T0)
        with pytest.raises(LockContention) as ei:
            await acquire_lock(db, "RCAT", LOCK_STALE, T0 + timedelta(minutes=9))
        assert "Sync already running for RCAT" in str(ei.value)

        # 别的 symbol 不受影响
        await acquire_lock(db, "UMAC", LOCK_STALE, T0)

        await release_lock(db, "RCAT")
        assert await get_json(db, k_lock("RCAT")) is None
        await acquire_lock(db, "RCAT", LOCK_STALE, T0)
    finally:
        await db.close()


def test_lock_contention_and_release(tmp_path):
    asyncio.run(_contention_async(tmp_path / "lock.db"))


async def _stale_async(db_path):
    db = await init_db(db_path)
    try:
        await acquire_lock(db, "RCAT", LOCK_STALE, T0)
        later = T0 + timedelta(minutes=11)
        await acquire_lock(db, "RCAT", LOCK_STALE, later)
        lock = await get_json(db, k_lock("RCAT"))
        assert lock["acquired_at"] == to_iso(later)

        # 坏掉的锁记录也当作过期
        await set_json(db, k_lock("UMAC"), {"symbol": "UMAC", "acquired_at": "garbage"})
        await acquire_lock(db, "UMAC", LOCK_STALE, T0)
        assert (await get_json(db, k_lock("UMAC")))["acquired_at"] == to_iso(T0)
    finally:
        await db.close()


def test_stale_lock_is_taken_over(tmp_path):
    asyncio.run(_stale_async(tmp_path / "lock.db"))


async def _race_async(db_path):
    db = await init_db(db_path)
    try:
        # 两个调用者都“看到”没有锁，真正创建时只有一个能成功
        first = await set_json(db, k_lock("RCAT"), {"symbol": "RCAT", "acquired_at": to_iso(T0)}, only_if_new=True)
        second = await set_json(db, k_lock("RCAT"), {"symbol": "RCAT", "acquired_at": to_iso(T0)}, only_if_new=True)
        assert (first, second) == (True, False)

        results = await asyncio.gather(
            acquire_lock(db, "UMAC", LOCK_STALE, T0),
            acquire_lock(db, "UMAC", LOCK_STALE, T0),
            return_exceptions=True,
        )
        assert sum(1 for r in results if isinstance(r, LockContention)) == 1
    finally:
        await db.close()


def test_only_one_creator_wins(tmp_path):
    asyncio.run(_race_async(tmp_path / "lock.db"))
