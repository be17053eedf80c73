# -*- coding: utf-8 -*-
"""
tests/test_aggregate.py
每日聚合：clean/total 计数、作者标签、关注人数只写今天、保留天数、无 clean 消息时均值为 None。
"""
import asyncio
from datetime import date, timedelta

import pytest

from stcd.aggregate import apply_messages, load_series, prune_days, series_to_points, update_series
from stcd.models import DailyAggregate, SeriesStore
from stcd.normalizer import normalize_message
from stcd.storage import init_db
from stcd.utils import days_back_list

from fakes import T0, raw_msg


def _msg(id, body, **kw):
    return normalize_message(raw_msg(id, body=body, **kw), now=T0)


def test_clean_vs_total():
    series = SeriesStore(symbol="RCAT")
    clean = _msg(1, "huge contract win", user_sentiment="Bullish")
    spammy = _msg(2, "huge contract win", symbols=("A", "B", "C", "D", "E"))
    assert spammy.spam.score >= 0.75

    apply_messages(series, [clean, spammy], spam_threshold=0.75)
    day = series.days[T0.date().isoformat()]
    assert day.volume_total == 2
    assert day.volume_clean == 1
    assert day.sentiment_count_clean == 1
    assert day.sentiment_sum_clean == pytest.approx(clean.sentiment.score)
    assert day.user_sentiment_count_clean == 1
    assert day.user_sentiment_sum_clean == 0.75


def test_null_mean_when_no_clean_messages():
    d = T0.date().isoformat()
    series = SeriesStore(symbol="RCAT", days={d: DailyAggregate(date=d, volume_total=4, volume_clean=0)})
    points = series_to_points(series, [d, "2025-03-11"])
    assert points[0].sentiment_mean is None
    assert points[0].volume_total == 4
    assert points[1].sentiment_mean is None
    assert points[1].volume_total == 0


def test_mean_blends_user_tags():
    d = "2025-03-10"
    day = DailyAggregate(
        date=d, volume_total=2, volume_clean=2,
        sentiment_sum_clean=0.4, sentiment_count_clean=2,
        user_sentiment_sum_clean=0.75, user_sentiment_count_clean=1,
    )
    p = series_to_points(SeriesStore(symbol="RCAT", days={d: day}), [d])[0]
    # 模型均值 0.2，作者标签均值 (0.75-0.5)*2 = 0.5
    assert p.sentiment_mean == pytest.approx(0.2 * 0.7 + 0.5 * 0.3)


def test_retention_keeps_newest():
    series = SeriesStore(symbol="RCAT")
    start = date(2023, 1, 1)
    for i in range(500):
        d = (start + timedelta(days=i)).isoformat()
        series.days[d] = DailyAggregate(date=d, volume_total=1)
    dropped = prune_days(series, 420)
    assert len(dropped) == 80
    assert len(series.days) == 420
    assert min(series.days) == (start + timedelta(days=80)).isoformat()
    assert max(series.days) == (start + timedelta(days=499)).isoformat()


async def _retention_persisted_async(db_path):
    db = await init_db(db_path)
    try:
        start = date(2023, 1, 1)
        for i in range(500):
            await update_series(db, "RCAT", [], i, today=start + timedelta(days=i))

        s = await load_series(db, "RCAT")
        assert len(s.days) == 420
        assert min(s.days) == (start + timedelta(days=80)).isoformat()
        assert max(s.days) == (start + timedelta(days=499)).isoformat()
        assert s.days[max(s.days)].watchers == 499
    finally:
        await db.close()


def test_retention_persists_newest_days(tmp_path):
    asyncio.run(_retention_persisted_async(tmp_path / "retention.db"))


async def _update_series_async(db_path):
    db = await init_db(db_path)
    try:
        s = await load_series(db, "rcat")
        assert s.symbol == "RCAT"
        assert s.days == {}

        await update_series(db, "RCAT", [_msg(1, "contract"), _msg(2, "dilution")], None)
        await update_series(db, "RCAT", [], 1234, today=T0.date())

        s = await load_series(db, "RCAT")
        day = s.days[T0.date().isoformat()]
        assert day.volume_total == 2
        assert day.watchers == 1234
        assert s.updated_at is not None

        # 只有当天那格有 watchers
        await update_series(db, "RCAT", [], 999, today=T0.date() + timedelta(days=1))
        s = await load_series(db, "RCAT")
        assert s.days[T0.date().isoformat()].watchers == 1234
        assert s.days[(T0.date() + timedelta(days=1)).isoformat()].watchers == 999
    finally:
        await db.close()


def test_update_series_persists(tmp_path):
    asyncio.run(_update_series_async(tmp_path / "agg.db"))


def test_days_back_list():
    assert days_back_list(3, date(2025, 3, 1)) == ["2025-02-27", "2025-02-28", "2025-03-01"]
