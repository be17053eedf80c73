# -*- coding: utf-8 -*-
"""
tests/test_spam.py
正文指纹稳定性、启发式取最大值、跨 ticker 重复窗口。
"""
import asyncio
from datetime import timedelta

from stcd.spam import (
    DEFAULT_SPAM_RULES,
    SpamFeatures,
    count_cashtags,
    count_tokens,
    normalize_body,
    normalized_hash,
    spam_score,
    update_duplicate_state,
)
from stcd.storage import get_json, init_db, k_hash
from stcd.utils import to_iso

from fakes import T0


def features(**kw) -> SpamFeatures:
    base = dict(
        body="a normal post about the quarter",
        symbols_tagged_count=1,
        cashtag_count=0,
        token_count=6,
        followers=500,
        account_age_days=900,
        duplicate_symbols_count=1,
    )
    base.update(kw)
    return SpamFeatures(**base)


def test_hash_stable_across_case_cashtag_and_spacing():
    assert normalized_hash("$AAPL to the MOON!!") == normalized_hash("  aapl to the moon")
    assert normalized_hash("$AAPL to the MOON!!") != normalized_hash("$AAPL to the floor")


def test_hash_ignores_urls():
    assert normalize_body("Buy now https://spam.example/x?y=1 !!!") == "buy now"


def test_counts():
    assert count_cashtags("$RCAT $UMAC and $ACHR go") == 3
    assert count_tokens("$RCAT $UMAC and $ACHR go https://x.y/z") == 5


def test_clean_post_scores_zero():
    r = spam_score(features())
    assert r.score == 0.0
    assert r.reasons == []


def test_max_combination_not_sum():
    # 新号短帖 0.6 + 挂了 6 个 ticker 0.9 -> 0.9，两个原因都在
    r = spam_score(features(body="buy", symbols_tagged_count=6, followers=1, account_age_days=3, token_count=1))
    assert r.score == 0.9
    assert r.reasons == ["ticker_stuffing", "low_rep_short_post"]


def test_cashtag_density():
    r = spam_score(features(body="$A $B $C now", cashtag_count=3, token_count=4))
    assert r.score == 0.85
    assert "cashtag_density" in r.reasons


def test_promo_keywords_low_weight():
    r = spam_score(features(body="join my discord for free alert"))
    assert r.score == 0.55
    assert r.reasons == ["promo_keywords"]


def test_cross_ticker_duplicate_threshold():
    assert spam_score(features(duplicate_symbols_count=2)).score == 0.0
    r = spam_score(features(duplicate_symbols_count=DEFAULT_SPAM_RULES.duplicate_symbol_threshold))
    assert r.score == 0.95
    assert r.reasons == ["cross_ticker_duplicate"]


def test_low_rep_needs_known_age():
    r = spam_score(features(body="buy", followers=0, account_age_days=None))
    assert r.score == 0.0


async def _duplicate_window_async(db_path):
    db = await init_db(db_path)
    try:
        h = normalized_hash("same blast text")
        t = to_iso(T0)
        assert await update_duplicate_state(db, h, "RCAT", t, 120, T0) == 1
        # 同一个 symbol 再发一次不增加 symbol 数
        assert await update_duplicate_state(db, h, "RCAT", t, 120, T0) == 1
        assert await update_duplicate_state(db, h, "UMAC", t, 120, T0) == 2
        assert await update_duplicate_state(db, h, "ACHR", t, 120, T0) == 3

        rec = await get_json(db, k_hash(h))
        assert rec["symbols"] == {"RCAT": 2, "UMAC": 1, "ACHR": 1}

        # 超出窗口：重置，只剩当前 symbol，记录本身不删
        later = T0 + timedelta(minutes=121)
        assert await update_duplicate_state(db, h, "GRRR", to_iso(later), 120, later) == 1
        rec = await get_json(db, k_hash(h))
        assert rec["symbols"] == {"GRRR": 1}
    finally:
        await db.close()


def test_duplicate_window(tmp_path):
    asyncio.run(_duplicate_window_async(tmp_path / "spam.db"))
