# -*- coding: utf-8 -*-
"""
tests/test_storage.py
验证 stcd/storage.py 的 blob 读写：
1) init_db -> set_json -> get_json 能读回
2) only_if_new：已存在时不覆盖并返回 False
3) list_keys 按前缀列出（'_' 不当通配符）
"""
import asyncio

from stcd.storage import delete_key, get_json, init_db, k_hash, k_lock, k_msgs, k_series, k_state, list_keys, set_json


async def _roundtrip_async(db_path):
    db = await init_db(db_path)
    try:
        assert await get_json(db, "state/RCAT.json") is None

        ok = await set_json(db, "state/RCAT.json", {"symbol": "RCAT", "last_seen_id": 7})
        assert ok
        assert await get_json(db, "state/RCAT.json") == {"symbol": "RCAT", "last_seen_id": 7}

        # 覆盖写
        await set_json(db, "state/RCAT.json", {"symbol": "RCAT", "last_seen_id": 9})
        assert (await get_json(db, "state/RCAT.json"))["last_seen_id"] == 9

        await delete_key(db, "state/RCAT.json")
        assert await get_json(db, "state/RCAT.json") is None
    finally:
        await db.close()


def test_set_get_delete(tmp_path):
    asyncio.run(_roundtrip_async(tmp_path / "blobs.db"))


async def _only_if_new_async(db_path):
    db = await init_db(db_path)
    try:
        assert await set_json(db, "lock/RCAT.json", {"owner": "a"}, only_if_new=True) is True
        assert await set_json(db, "lock/RCAT.json", {"owner": "b"}, only_if_new=True) is False
        assert await get_json(db, "lock/RCAT.json") == {"owner": "a"}
    finally:
        await db.close()


def test_only_if_new_does_not_overwrite(tmp_path):
    asyncio.run(_only_if_new_async(tmp_path / "blobs.db"))


async def _list_keys_async(db_path):
    db = await init_db(db_path)
    try:
        await set_json(db, "messages/RCAT/2025-03-01.json", [])
        await set_json(db, "messages/RCAT/2025-03-02.json", [])
        await set_json(db, "messages/UMAC/2025-03-01.json", [])
        await set_json(db, "a_b", 1)
        await set_json(db, "axb", 2)

        assert await list_keys(db, "messages/RCAT/") == [
            "messages/RCAT/2025-03-01.json",
            "messages/RCAT/2025-03-02.json",
        ]
        assert await list_keys(db, "a_") == ["a_b"]
    finally:
        await db.close()


def test_list_keys_prefix(tmp_path):
    asyncio.run(_list_keys_async(tmp_path / "blobs.db"))


async def _corrupt_async(db_path):
    db = await init_db(db_path)
    try:
        await db.execute("INSERT INTO blobs(key, value, updated_at) VALUES(?,?,?)", ("series/X.json", "{not json", 0))
        await db.commit()
        assert await get_json(db, "series/X.json") is None
    finally:
        await db.close()


def test_corrupt_blob_reads_as_missing(tmp_path):
    asyncio.run(_corrupt_async(tmp_path / "blobs.db"))


def test_key_layout():
    assert k_state("rcat") == "state/RCAT.json"
    assert k_msgs("rcat", "2025-03-10") == "msgs/RCAT/2025-03-10.json"
    assert k_series("rcat") == "series/RCAT.json"
    assert k_hash("abc") == "hash/abc.json"
    assert k_lock("rcat") == "lock/RCAT.json"
