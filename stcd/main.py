# stcd/main.py
# 串起：config -> storage -> source -> ingest（sync / backfill）-> 定时循环
# 用法：
#   python -m stcd.main sync [SYMBOL ...]
#   python -m stcd.main backfill RCAT --days 30
#   python -m stcd.main series RCAT --days 30
#   python -m stcd.main loop --run-seconds 0

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from stcd.aggregate import load_series, series_to_points
from stcd.collector import MessageSource, StockTwitsSource
from stcd.config import ROOT, PipelineConfig, load_cfg, load_tickers, require_symbol
from stcd.errors import StcdError
from stcd.ingest import IngestContext, backfill_symbol, sync_symbol
from stcd.sentiment import load_lexicon
from stcd.storage import init_db
from stcd.utils import days_back_list


def _db_path(cfg: dict) -> Path:
    p = Path(cfg.get("storage", {}).get("db_path", "stcd.db"))
    return p if p.is_absolute() else ROOT / p


async def run_one(ctx: IngestContext, symbol: str) -> dict:
    """单个 symbol 的同步；任何异常都变成 {"symbol", "ok": False, "error"}，不往外抛。"""
    try:
        res = await sync_symbol(ctx, symbol)
        return {"ok": True, **res.to_dict()}
    except StcdError as e:
        return {"symbol": symbol.upper(), "ok": False, "error": str(e)}
    except Exception as e:
        print(f"[main] {symbol} 未预期的错误: {e!r}")
        return {"symbol": symbol.upper(), "ok": False, "error": repr(e)}


async def sync_many(ctx: IngestContext, symbols: List[str], concurrency: int = 1) -> List[dict]:
    """
    批量同步。每个 symbol 独立成败；concurrency 控制同时在跑的数量（默认 1，逐个跑）。
    返回顺序与 symbols 一致。
    """
    sem = asyncio.Semaphore(max(1, concurrency))

    async def _guarded(sym: str) -> dict:
        async with sem:
            return await run_one(ctx, sym)

    return list(await asyncio.gather(*(_guarded(s) for s in symbols)))


async def run_backfill(ctx: IngestContext, symbol: str, days: Optional[int] = None) -> dict:
    try:
        res = await backfill_symbol(ctx, symbol, days)
        return {"ok": True, **res.to_dict()}
    except StcdError as e:
        return {"symbol": symbol.upper(), "ok": False, "error": str(e)}
    except Exception as e:
        print(f"[main] {symbol} 回补未预期的错误: {e!r}")
        return {"symbol": symbol.upper(), "ok": False, "error": repr(e)}


async def run_scheduler(ctx: IngestContext, symbols: List[str], every_sec: int = 300, concurrency: int = 1):
    """定时跑一轮 sync_many；单轮出错只打印，下一轮照常。"""
    print(f"[scheduler] started, every {every_sec}s, symbols={symbols}")
    try:
        while True:
            try:
                results = await sync_many(ctx, symbols, concurrency)
                ok = sum(1 for r in results if r.get("ok"))
                print(f"[scheduler] tick done: ok={ok}/{len(results)}")
                for r in results:
                    if not r.get("ok"):
                        print(f"[scheduler] {r['symbol']} failed: {r['error']}")
            except Exception as e:
                print(f"[scheduler] tick error: {e}")
            await asyncio.sleep(every_sec)
    except asyncio.CancelledError:
        print("[scheduler] cancelled")
        raise
    finally:
        print("[scheduler] finished")


async def _build_ctx(cfg: dict, source: Optional[MessageSource] = None):
    db = await init_db(_db_path(cfg))
    tickers = load_tickers()
    ctx = IngestContext(
        db=db,
        source=source or StockTwitsSource.from_cfg(cfg),
        cfg=PipelineConfig.from_cfg(cfg),
        tickers=tickers,
        lexicon=load_lexicon(),
    )
    return ctx


async def _close_ctx(ctx: IngestContext):
    close = getattr(ctx.source, "close", None)
    if close is not None:
        await close()
    await ctx.db.close()


async def main_sync(symbols: List[str]) -> List[dict]:
    cfg = load_cfg()
    ctx = await _build_ctx(cfg)
    try:
        if symbols:
            wanted = [require_symbol(s, ctx.tickers) for s in symbols]
        else:
            wanted = list(ctx.tickers)
        return await sync_many(ctx, wanted, int(cfg["scheduler"].get("concurrency", 1)))
    finally:
        await _close_ctx(ctx)


async def main_backfill(symbol: str, days: Optional[int]) -> dict:
    cfg = load_cfg()
    ctx = await _build_ctx(cfg)
    try:
        return await run_backfill(ctx, require_symbol(symbol, ctx.tickers), days)
    finally:
        await _close_ctx(ctx)


async def query_series(ctx: IngestContext, symbol: str, days: int = 30) -> dict:
    """最近 days 天（含今天）的日序列点位，给图表用。"""
    series = await load_series(ctx.db, symbol)
    points = series_to_points(series, days_back_list(max(1, days)))
    return {
        "symbol": series.symbol,
        "updated_at": series.updated_at,
        "points": [asdict(p) for p in points],
    }


async def main_series(symbol: str, days: int) -> dict:
    cfg = load_cfg()
    ctx = await _build_ctx(cfg)
    try:
        return await query_series(ctx, require_symbol(symbol, ctx.tickers), days)
    finally:
        await _close_ctx(ctx)


async def main(run_seconds: int = 0):
    cfg = load_cfg()
    ctx = await _build_ctx(cfg)
    sched = cfg.get("scheduler", {})

    tasks = []
    print("[main] creating tasks…")
    tasks.append(asyncio.create_task(run_scheduler(
        ctx,
        list(ctx.tickers),
        every_sec=int(sched.get("interval_sec", 300)),
        concurrency=int(sched.get("concurrency", 1)),
    )))

    print(f"[main] running for {run_seconds}s …")
    try:
        if run_seconds and run_seconds > 0:
            await asyncio.sleep(run_seconds)
        else:
            # 0 或负数 => 永久运行
            stop = asyncio.Event()
            await stop.wait()
    except asyncio.CancelledError:
        print("[main] cancelled")
        raise
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await _close_ctx(ctx)
        print("[main] finished")


def _dump(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stcd", description="StockTwits 情绪/热度日序列采集")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_sync = sub.add_parser("sync", help="增量同步（不给 symbol 则同步全部 ticker）")
    p_sync.add_argument("symbols", nargs="*")

    p_bf = sub.add_parser("backfill", help="按天数回补历史消息")
    p_bf.add_argument("symbol")
    p_bf.add_argument("--days", type=int, default=None)

    p_series = sub.add_parser("series", help="查看日序列（成交量、情绪均值、关注人数）")
    p_series.add_argument("symbol")
    p_series.add_argument("--days", type=int, default=30)

    p_loop = sub.add_parser("loop", help="定时同步")
    p_loop.add_argument("--run-seconds", type=int, default=0)
    return parser


def cli(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        if args.cmd == "sync":
            results = asyncio.run(main_sync(args.symbols))
            _dump(results)
            return 0 if all(r.get("ok") for r in results) else 1
        if args.cmd == "backfill":
            result = asyncio.run(main_backfill(args.symbol, args.days))
            _dump(result)
            return 0 if result.get("ok") else 1
        if args.cmd == "series":
            _dump(asyncio.run(main_series(args.symbol, args.days)))
            return 0
        asyncio.run(main(run_seconds=args.run_seconds))
        return 0
    except StcdError as e:
        _dump({"ok": False, "error": str(e)})
        return 2
    except KeyboardInterrupt:
        print("[main] interrupted")
        return 130


if __name__ == "__main__":
    raise SystemExit(cli())
