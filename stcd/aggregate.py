# -*- coding: utf-8 -*-
"""
stcd/aggregate.py
每个 symbol 一份 SeriesStore（series/{SYM}.json），按 UTC 日期累加：
- volume_total：所有新消息
- volume_clean / sentiment_sum_clean / sentiment_count_clean：spam 分低于阈值的消息
- user_sentiment_*：clean 消息里作者自己打的 Bullish/Bearish 标签
- watchers：只写“今天”那一格
只增不减；超出保留天数时按日期字符串从旧到新整天删除。
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional

import aiosqlite

from stcd.models import DailyAggregate, DailyPoint, Message, SeriesStore
from stcd.storage import get_json, k_series, set_json
from stcd.utils import parse_iso, to_iso, to_utc_date, utc_now

MODEL_WEIGHT = 0.7
USER_WEIGHT = 0.3


def user_sentiment_to_score(tag: Optional[str]) -> Optional[float]:
    if tag == "Bullish":
        return 0.75
    if tag == "Bearish":
        return 0.25
    return None


async def load_series(db: aiosqlite.Connection, symbol: str) -> SeriesStore:
    existing = await get_json(db, k_series(symbol))
    return SeriesStore.from_dict(existing if isinstance(existing, dict) else None, symbol.upper())


def _day(series: SeriesStore, d: str) -> DailyAggregate:
    if d not in series.days:
        series.days[d] = DailyAggregate(date=d)
    return series.days[d]


def apply_messages(series: SeriesStore, messages: Iterable[Message], spam_threshold: float = 0.75) -> None:
    for m in messages:
        created = parse_iso(m.created_at)
        if created is None:
            continue
        day = _day(series, to_utc_date(created))
        day.volume_total += 1
        if m.spam.score < spam_threshold:
            day.volume_clean += 1
            day.sentiment_sum_clean += m.sentiment.score
            day.sentiment_count_clean += 1
            us = user_sentiment_to_score(m.user_sentiment)
            if us is not None:
                day.user_sentiment_sum_clean += us
                day.user_sentiment_count_clean += 1


def prune_days(series: SeriesStore, retention_days: int = 420) -> List[str]:
    """删掉最旧的那些天，返回被删的日期"""
    keys = sorted(series.days)
    if len(keys) <= retention_days:
        return []
    dropped = keys[: len(keys) - retention_days]
    for k in dropped:
        del series.days[k]
    return dropped


async def update_series(
    db: aiosqlite.Connection,
    symbol: str,
    new_messages: List[Message],
    watchers: Optional[int] = None,
    *,
    spam_threshold: float = 0.75,
    retention_days: int = 420,
    today: Optional[date] = None,
) -> SeriesStore:
    series = await load_series(db, symbol)

    apply_messages(series, new_messages, spam_threshold)

    if watchers is not None:
        today = today or utc_now().date()
        _day(series, today.isoformat()).watchers = watchers

    dropped = prune_days(series, retention_days)
    if dropped:
        print(f"[aggregate] {symbol} 删除过期天数 {len(dropped)} ({dropped[0]} .. {dropped[-1]})")

    series.updated_at = to_iso(utc_now())
    await set_json(db, k_series(symbol), series.to_dict())
    return series


def series_to_points(series: SeriesStore, dates: List[str]) -> List[DailyPoint]:
    """
    把请求的日期投影成图表点位。
    sentiment_mean：当天 0 条 clean 消息时为 None（区分“没数据”和“中性”）；
    有作者标签时与模型均值按 0.7/0.3 混合（标签均值先缩放到 [-1, 1]）。
    """
    points: List[DailyPoint] = []
    for d in dates:
        day = series.days.get(d)
        if day is None:
            points.append(DailyPoint(date=d, volume_clean=0, volume_total=0, sentiment_mean=None, watchers=None))
            continue

        model_mean = day.sentiment_sum_clean / day.sentiment_count_clean if day.sentiment_count_clean > 0 else None
        user_mean = None
        if day.user_sentiment_count_clean > 0:
            user_mean = (day.user_sentiment_sum_clean / day.user_sentiment_count_clean - 0.5) * 2

        mean = model_mean
        if model_mean is not None and user_mean is not None:
            mean = model_mean * MODEL_WEIGHT + user_mean * USER_WEIGHT
        elif model_mean is None and user_mean is not None:
            mean = user_mean

        points.append(DailyPoint(
            date=d,
            volume_clean=day.volume_clean,
            volume_total=day.volume_total,
            sentiment_mean=mean,
            watchers=day.watchers,
        ))
    return points
