# -*- coding: utf-8 -*-
"""
tests/test_main.py
批量编排：一个 symbol 出错不影响其它 symbol；结果顺序与输入一致；日序列查询；命令行参数。
"""
import asyncio
from datetime import timedelta

from stcd.errors import FetchFailure
from stcd.ingest import IngestContext
from stcd.main import build_parser, query_series, run_backfill, run_one, sync_many
from stcd.parsers.stocktwits_json import StreamPage
from stcd.storage import get_json, init_db, k_lock, set_json
from stcd.utils import to_iso, utc_now

from fakes import T0, page, raw_msg


class PerSymbolSource:
    """UMAC 永远 502，其它 symbol 各返回一条消息。"""

    def __init__(self, now=T0):
        self.now = now
        self.calls = []

    async def fetch_page(self, symbol, max_id=None):
        self.calls.append(symbol)
        if symbol == "UMAC":
            raise FetchFailure(symbol, "upstream 502", 502)
        if max_id is not None:
            return StreamPage(messages=[])
        return page(raw_msg(100, created_at=self.now - timedelta(minutes=1), symbols=(symbol,)))

    async def extract_watchers(self, symbol, messages):
        return None


async def _batch_async(tmp_path, concurrency):
    db = await init_db(tmp_path / "main.db")
    ctx = IngestContext(db=db, source=PerSymbolSource(), clock=lambda: T0)
    try:
        # GRRR 有一把新鲜的锁
        await set_json(db, k_lock("GRRR"), {"symbol": "GRRR", "acquired_at": to_iso(T0)})

        results = await sync_many(ctx, ["RCAT", "UMAC", "GRRR", "ACHR"], concurrency=concurrency)

        assert [r["symbol"] for r in results] == ["RCAT", "UMAC", "GRRR", "ACHR"]
        assert [r["ok"] for r in results] == [True, False, False, True]
        assert results[0]["stored_new"] == 1
        assert results[0]["state"] == "DONE"
        assert "UMAC" in results[1]["error"]
        assert results[2]["error"] == "Sync already running for GRRR"
        assert results[3]["last_seen_id"] == 100
    finally:
        await db.close()


def test_one_failure_does_not_abort_batch(tmp_path):
    asyncio.run(_batch_async(tmp_path, 1))


def test_batch_with_concurrency(tmp_path):
    asyncio.run(_batch_async(tmp_path, 3))


class ExplodingSource:
    async def fetch_page(self, symbol, max_id=None):
        raise RuntimeError("bug")

    async def extract_watchers(self, symbol, messages):
        return None


async def _unexpected_async(tmp_path):
    db = await init_db(tmp_path / "main.db")
    ctx = IngestContext(db=db, source=ExplodingSource(), clock=lambda: T0)
    try:
        r = await run_one(ctx, "rcat")
        assert r == {"symbol": "RCAT", "ok": False, "error": "RuntimeError('bug')"}
    finally:
        await db.close()


def test_unexpected_error_becomes_result(tmp_path):
    asyncio.run(_unexpected_async(tmp_path))


async def _backfill_unexpected_async(tmp_path):
    db = await init_db(tmp_path / "main.db")
    ctx = IngestContext(db=db, source=ExplodingSource(), clock=lambda: T0)
    try:
        r = await run_backfill(ctx, "rcat", 7)
        assert r == {"symbol": "RCAT", "ok": False, "error": "RuntimeError('bug')"}
        # 锁照样释放
        assert await get_json(db, k_lock("RCAT")) is None
    finally:
        await db.close()


def test_backfill_unexpected_error_becomes_result(tmp_path):
    asyncio.run(_backfill_unexpected_async(tmp_path))


async def _series_async(tmp_path):
    now = utc_now()
    db = await init_db(tmp_path / "main.db")
    ctx = IngestContext(db=db, source=PerSymbolSource(now=now), clock=lambda: now)
    try:
        await run_one(ctx, "RCAT")
        out = await query_series(ctx, "RCAT", days=5)
        assert out["symbol"] == "RCAT"
        assert len(out["points"]) == 5
        assert out["points"][0]["volume_total"] == 0
        assert out["points"][0]["sentiment_mean"] is None
        assert out["points"][-1]["date"] == now.date().isoformat()
        assert out["points"][-1]["volume_total"] == 1
    finally:
        await db.close()


def test_query_series(tmp_path):
    asyncio.run(_series_async(tmp_path))


def test_cli_parser():
    p = build_parser()
    args = p.parse_args(["backfill", "RCAT", "--days", "7"])
    assert (args.cmd, args.symbol, args.days) == ("backfill", "RCAT", 7)
    args = p.parse_args(["sync"])
    assert args.symbols == []
    args = p.parse_args(["loop", "--run-seconds", "30"])
    assert args.run_seconds == 30
