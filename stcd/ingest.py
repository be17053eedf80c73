# -*- coding: utf-8 -*-
"""
stcd/ingest.py
同步引擎 / 回补引擎：
  翻页拉取 -> 计算重复指纹 -> 规范化打分 -> 按天按 id 合并 -> 更新每日聚合 -> 更新游标

状态：IDLE -> LOCKED -> PAGING -> MERGING -> AGGREGATING -> DONE
      任何一步出错 -> FAILED，然后一定释放锁。

合并和聚合都是按页做的：中途失败时，已经合并的页保留；
只有最后的游标（state）没写，下一轮会把这些 id 识别为“已存在”，不会重复计数。
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import aiosqlite

from stcd.aggregate import update_series
from stcd.collector import MessageSource
from stcd.config import PipelineConfig
from stcd.errors import LockContention
from stcd.lock import acquire_lock, release_lock
from stcd.models import Message, SymbolState, TickerConfig
from stcd.normalizer import normalize_message
from stcd.parsers.stocktwits_json import RawMessage
from stcd.sentiment import DEFAULT_LEXICON, Lexicon
from stcd.spam import DEFAULT_SPAM_RULES, SpamRules, normalized_hash, update_duplicate_state
from stcd.storage import get_json, k_msgs, k_state, set_json
from stcd.utils import parse_iso, to_iso, to_utc_date, utc_now


class Phase(str, enum.Enum):
    IDLE = "IDLE"
    LOCKED = "LOCKED"
    PAGING = "PAGING"
    MERGING = "MERGING"
    AGGREGATING = "AGGREGATING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class IngestContext:
    db: aiosqlite.Connection
    source: MessageSource
    cfg: PipelineConfig = field(default_factory=PipelineConfig)
    tickers: Dict[str, TickerConfig] = field(default_factory=dict)
    lexicon: Lexicon = DEFAULT_LEXICON
    clock: Callable[[], datetime] = utc_now

    @property
    def rules(self) -> SpamRules:
        return replace(DEFAULT_SPAM_RULES, duplicate_symbol_threshold=self.cfg.duplicate_symbol_threshold)

    def display_name(self, symbol: str, username: str) -> Optional[str]:
        t = self.tickers.get(symbol)
        if t is None:
            return None
        return t.whitelist_users.get(username.lower())


@dataclass
class SyncResult:
    symbol: str
    fetched: int = 0
    stored_new: int = 0
    stored_new_clean: int = 0
    pages_used: int = 0
    last_seen_id: Optional[int] = None
    last_sync_at: Optional[str] = None
    watchers: Optional[int] = None
    state: Phase = Phase.IDLE

    def to_dict(self) -> dict:
        d = asdict(self)
        d["state"] = self.state.value
        return d


@dataclass
class BackfillResult:
    symbol: str
    days: int
    pages: int = 0
    fetched: int = 0
    stored: int = 0
    stored_new: int = 0
    wrote_days: int = 0
    last_sync_at: Optional[str] = None
    watchers: Optional[int] = None
    state: Phase = Phase.IDLE

    def to_dict(self) -> dict:
        d = asdict(self)
        d["state"] = self.state.value
        return d


# -------------------- 按天存储 --------------------

async def load_day(db: aiosqlite.Connection, symbol: str, date: str) -> List[Message]:
    raw = await get_json(db, k_msgs(symbol, date))
    if not isinstance(raw, list):
        return []
    return [Message.from_dict(x) for x in raw if isinstance(x, dict)]


async def save_day(db: aiosqlite.Connection, symbol: str, date: str, msgs: List[Message], cap: int = 2500) -> List[Message]:
    # 一天最多保留 id 最大的 cap 条，避免单个 blob 无限变大
    trimmed = sorted(msgs, key=lambda m: m.id, reverse=True)[:cap]
    await set_json(db, k_msgs(symbol, date), [m.to_dict() for m in trimmed])
    return trimmed


def bucket_by_day(messages: List[Message]) -> Dict[str, List[Message]]:
    buckets: Dict[str, List[Message]] = {}
    for m in messages:
        created = parse_iso(m.created_at)
        if created is None:
            continue
        buckets.setdefault(to_utc_date(created), []).append(m)
    return buckets


async def merge_messages(
    db: aiosqlite.Connection,
    symbol: str,
    messages: List[Message],
    *,
    overwrite: bool = False,
    cap: int = 2500,
) -> Tuple[List[Message], List[int]]:
    """
    按 id 合并进每天的 blob。
    overwrite=False（同步）：已存在的 id 不再写入；
    overwrite=True（回补）：同 id 整条覆盖。
    返回 (之前不存在且写入成功的消息, 合并后仍在存储里的本批 id)。
    """
    new_messages: List[Message] = []
    present_ids: List[int] = []
    for day, bucket in bucket_by_day(messages).items():
        existing = await load_day(db, symbol, day)
        by_id = {m.id: m for m in existing}
        existing_ids = set(by_id)

        incoming: Dict[int, Message] = {}
        for m in bucket:
            incoming[m.id] = m

        fresh = [m for i, m in incoming.items() if i not in existing_ids]
        if not fresh and not overwrite:
            present_ids.extend(incoming)
            continue

        if overwrite:
            by_id.update(incoming)
        else:
            for m in fresh:
                by_id[m.id] = m

        kept = await save_day(db, symbol, day, list(by_id.values()), cap)
        kept_ids = {m.id for m in kept}
        new_messages.extend(m for m in fresh if m.id in kept_ids)
        present_ids.extend(i for i in incoming if i in kept_ids)
    return new_messages, present_ids


# -------------------- 单页处理 --------------------

async def normalize_batch(ctx: IngestContext, symbol: str, raws: List[RawMessage], now: datetime) -> List[Message]:
    out: List[Message] = []
    skipped = 0
    for raw in raws:
        # 没有 id 或时间的消息无法去重/分天，直接丢弃
        if raw.id <= 0 or parse_iso(raw.created_at) is None:
            skipped += 1
            continue

        dup_count = 1
        if raw.body:
            dup_count = await update_duplicate_state(
                ctx.db, normalized_hash(raw.body), symbol, raw.created_at,
                ctx.cfg.duplicate_window_minutes, now,
            )

        out.append(normalize_message(
            raw,
            dup_count,
            ctx.display_name(symbol, raw.username),
            lexicon=ctx.lexicon,
            rules=ctx.rules,
            now=now,
        ))
    if skipped:
        print(f"[ingest] {symbol} 丢弃 {skipped} 条缺少 id/时间的消息")
    return out


async def _best_effort_watchers(ctx: IngestContext, symbol: str, raws: List[RawMessage]) -> Optional[int]:
    try:
        return await ctx.source.extract_watchers(symbol, raws)
    except Exception as e:
        print(f"[ingest] {symbol} 关注人数获取失败，忽略: {e!r}")
        return None


# -------------------- 同步引擎 --------------------

async def sync_symbol(ctx: IngestContext, symbol: str) -> SyncResult:
    """
    增量同步：按 last_seen_id 水位线往回翻页，直到
      (a) 某页出现 id <= last_seen_id（丢弃这些，停止）
      (b) 达到 max_pages
      (c) 空页
    首次同步（last_seen_id 为 None）只拉一页，历史交给 backfill。
    """
    symbol = symbol.upper()
    cfg = ctx.cfg
    result = SyncResult(symbol=symbol)
    now = ctx.clock()

    try:
        await acquire_lock(ctx.db, symbol, timedelta(minutes=cfg.lock_stale_minutes), now)
    except LockContention:
        result.state = Phase.FAILED
        print(f"[ingest] {symbol} 已有同步在跑，放弃本次")
        raise
    result.state = Phase.LOCKED

    try:
        state = SymbolState.from_dict(await get_json(ctx.db, k_state(symbol)), symbol)
        last_seen = state.last_seen_id

        max_id: Optional[int] = None
        watchers: Optional[int] = None
        seen_raws: List[RawMessage] = []
        watermark_candidates: List[int] = []

        while result.pages_used < cfg.max_pages:
            result.state = Phase.PAGING
            page = await ctx.source.fetch_page(symbol, max_id)
            result.pages_used += 1
            if page.watchers is not None:
                watchers = page.watchers
            if not page.messages:
                break

            if last_seen is None:
                batch = list(page.messages)
                found_watermark = True
            else:
                batch = [m for m in page.messages if m.id > last_seen]
                # 缺 id 的消息（id <= 0）不算碰到水位线
                found_watermark = any(0 < m.id <= last_seen for m in page.messages)

            result.fetched += len(batch)
            seen_raws.extend(batch)

            result.state = Phase.MERGING
            messages = await normalize_batch(ctx, symbol, batch, now)
            fresh, present = await merge_messages(ctx.db, symbol, messages, cap=cfg.day_message_cap)

            result.state = Phase.AGGREGATING
            if fresh:
                await update_series(
                    ctx.db, symbol, fresh, None,
                    spam_threshold=cfg.spam_threshold, retention_days=cfg.retention_days,
                )
            result.stored_new += len(fresh)
            result.stored_new_clean += sum(1 for m in fresh if m.spam.score < cfg.spam_threshold)
            watermark_candidates.extend(present)

            if found_watermark:
                break
            ids = [m.id for m in page.messages if m.id > 0]
            if not ids:
                break
            # 下一页取更旧的
            max_id = min(ids) - 1

        if watchers is None:
            watchers = await _best_effort_watchers(ctx, symbol, seen_raws)
        if watchers is not None:
            result.state = Phase.AGGREGATING
            await update_series(
                ctx.db, symbol, [], watchers,
                spam_threshold=cfg.spam_threshold, retention_days=cfg.retention_days, today=now.date(),
            )

        # 水位线只增不减
        candidates = [i for i in [last_seen] + watermark_candidates if i is not None]
        state.last_seen_id = max(candidates) if candidates else None
        state.last_sync_at = to_iso(now)
        if watchers is not None:
            state.last_watchers = watchers
        await set_json(ctx.db, k_state(symbol), state.to_dict())

        result.last_seen_id = state.last_seen_id
        result.last_sync_at = state.last_sync_at
        result.watchers = state.last_watchers
        result.state = Phase.DONE
        print(
            f"[ingest] {symbol} 完成: pages={result.pages_used} fetched={result.fetched} "
            f"new={result.stored_new} clean={result.stored_new_clean} last_seen_id={result.last_seen_id}"
        )
        return result
    except Exception as e:
        print(f"[ingest] {symbol} 失败于 {result.state.value}: {e}")
        result.state = Phase.FAILED
        raise
    finally:
        await release_lock(ctx.db, symbol)


# -------------------- 回补引擎 --------------------

def clamp_days(days: Optional[int], cfg: PipelineConfig) -> int:
    if days is None:
        days = cfg.backfill_default_days
    return max(1, min(cfg.backfill_max_days, int(days)))


async def backfill_symbol(ctx: IngestContext, symbol: str, days: Optional[int] = None) -> BackfillResult:
    """
    按日期截止往回翻页：某页里出现早于截止时间的消息就停（这些消息丢弃）。
    另外遇到空页、has_more=False、达到 backfill_max_pages 也停。
    同 id 整条覆盖；不动 last_seen_id（那是同步引擎的）。
    """
    symbol = symbol.upper()
    cfg = ctx.cfg
    days = clamp_days(days, cfg)
    result = BackfillResult(symbol=symbol, days=days)
    now = ctx.clock()
    cutoff = now - timedelta(days=days)

    try:
        await acquire_lock(ctx.db, symbol, timedelta(minutes=cfg.lock_stale_minutes), now)
    except LockContention:
        result.state = Phase.FAILED
        print(f"[backfill] {symbol} 已有同步在跑，放弃本次")
        raise
    result.state = Phase.LOCKED
    print(f"[backfill] {symbol} 开始，回溯 {days} 天（截止 {to_iso(cutoff)}）")

    try:
        max_id: Optional[int] = None
        watchers: Optional[int] = None
        seen_raws: List[RawMessage] = []
        stored_ids = set()
        wrote_days = set()

        while result.pages < cfg.backfill_max_pages:
            result.state = Phase.PAGING
            page = await ctx.source.fetch_page(symbol, max_id)
            result.pages += 1
            if page.watchers is not None and watchers is None:
                watchers = page.watchers
            if not page.messages:
                break

            batch: List[RawMessage] = []
            crossed = False
            for m in page.messages:
                created = parse_iso(m.created_at)
                if created is None:
                    continue
                if created < cutoff:
                    crossed = True
                    continue
                batch.append(m)

            result.fetched += len(batch)
            seen_raws.extend(batch)

            result.state = Phase.MERGING
            messages = await normalize_batch(ctx, symbol, batch, now)
            fresh, present = await merge_messages(
                ctx.db, symbol, messages, overwrite=True, cap=cfg.day_message_cap,
            )
            present_set = set(present)
            stored_ids.update(present_set)
            wrote_days.update(bucket_by_day([m for m in messages if m.id in present_set]))

            result.state = Phase.AGGREGATING
            if fresh:
                await update_series(
                    ctx.db, symbol, fresh, None,
                    spam_threshold=cfg.spam_threshold, retention_days=cfg.retention_days,
                )
            result.stored_new += len(fresh)

            if crossed or not page.has_more:
                break
            ids = [m.id for m in page.messages if m.id > 0]
            if not ids:
                break
            max_id = min(ids) - 1

        if watchers is None:
            watchers = await _best_effort_watchers(ctx, symbol, seen_raws)
        if watchers is not None:
            await update_series(
                ctx.db, symbol, [], watchers,
                spam_threshold=cfg.spam_threshold, retention_days=cfg.retention_days, today=now.date(),
            )

        state = SymbolState.from_dict(await get_json(ctx.db, k_state(symbol)), symbol)
        state.last_sync_at = to_iso(now)
        state.last_backfill_at = to_iso(now)
        state.last_backfill_days = days
        if watchers is not None:
            state.last_watchers = watchers
        await set_json(ctx.db, k_state(symbol), state.to_dict())

        result.stored = len(stored_ids)
        result.wrote_days = len(wrote_days)
        result.last_sync_at = state.last_sync_at
        result.watchers = state.last_watchers
        result.state = Phase.DONE
        print(
            f"[backfill] {symbol} 完成: pages={result.pages} stored={result.stored} "
            f"new={result.stored_new} days={result.wrote_days}"
        )
        return result
    except Exception as e:
        print(f"[backfill] {symbol} 失败于 {result.state.value}: {e}")
        result.state = Phase.FAILED
        raise
    finally:
        await release_lock(ctx.db, symbol)
