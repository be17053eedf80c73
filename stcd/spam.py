# -*- coding: utf-8 -*-
"""
stcd/spam.py
垃圾/重复内容识别：
- normalized_hash：正文指纹（去 URL、折叠 $TICKER、小写、压空白后 sha1）
- update_duplicate_state：跨 symbol 的重复文本滑动窗口（按最后一次出现时间）
- spam_score：若干独立启发式，最终分数取触发项的最大值（不是相加）
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

import aiosqlite

from stcd.models import DuplicateHashRecord, SpamResult
from stcd.storage import get_json, k_hash, set_json
from stcd.utils import parse_iso, to_iso, utc_now

_URL_RE = re.compile(r"https?://\S+")
_CASHTAG_FOLD_RE = re.compile(r"\$([a-z]{1,6})")
_CASHTAG_RE = re.compile(r"\$[A-Za-z]{1,6}\b")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_TOKEN_SPLIT_RE = re.compile(r"[^A-Za-z0-9$]+")
_SPACES_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class SpamRules:
    ticker_stuffing_min: int = 5
    ticker_stuffing_score: float = 0.9
    cashtag_min: int = 3
    cashtag_density_min: float = 0.3
    cashtag_density_score: float = 0.85
    promo_pattern: re.Pattern = re.compile(
        r"\b(telegram|discord|signal group|join my|free alert|whatsapp)\b", re.IGNORECASE
    )
    promo_score: float = 0.55
    duplicate_symbol_threshold: int = 3
    duplicate_score: float = 0.95
    low_rep_max_followers: int = 5
    low_rep_max_age_days: int = 30
    low_rep_max_body_len: int = 60
    low_rep_score: float = 0.6


DEFAULT_SPAM_RULES = SpamRules()


@dataclass(frozen=True)
class SpamFeatures:
    body: str
    symbols_tagged_count: int
    cashtag_count: int
    token_count: int
    followers: int
    account_age_days: Optional[int]
    duplicate_symbols_count: int


# --------- 正文指纹 ---------

def normalize_body(body: str) -> str:
    text = _URL_RE.sub(" ", body).lower()
    # $AAPL 与 aapl 视为同一个词
    text = _CASHTAG_FOLD_RE.sub(r"\1", text)
    text = _NON_ALNUM_RE.sub(" ", text)
    return _SPACES_RE.sub(" ", text).strip()


def normalized_hash(body: str) -> str:
    return hashlib.sha1(normalize_body(body).encode("utf-8")).hexdigest()


def count_cashtags(body: str) -> int:
    return len(_CASHTAG_RE.findall(body))


def count_tokens(body: str) -> int:
    text = _URL_RE.sub(" ", body)
    return len([t for t in _TOKEN_SPLIT_RE.split(text) if t])


# --------- 跨 symbol 重复窗口 ---------

async def update_duplicate_state(
    db: aiosqlite.Connection,
    hash_: str,
    symbol: str,
    created_at: str,
    window_minutes: int = 120,
    now: Optional[datetime] = None,
) -> int:
    """
    记录 symbol 发过这段文本，返回窗口内发过同一文本的不同 symbol 数。
    记录的 last_seen_at 早于窗口就整体重置（清空 symbols），不删除。
    """
    now = now or utc_now()
    cutoff = now - timedelta(minutes=window_minutes)

    key = k_hash(hash_)
    existing = await get_json(db, key)
    record = None
    if isinstance(existing, dict):
        record = DuplicateHashRecord.from_dict(existing, hash_)
        last_seen = parse_iso(record.last_seen_at)
        if last_seen is None or last_seen < cutoff:
            record = None
    if record is None:
        record = DuplicateHashRecord(hash=hash_)

    record.symbols[symbol] = record.symbols.get(symbol, 0) + 1
    record.last_seen_at = created_at or to_iso(now)

    await set_json(db, key, record.to_dict())
    return len(record.symbols)


# --------- 启发式打分 ---------

def spam_score(features: SpamFeatures, rules: SpamRules = DEFAULT_SPAM_RULES) -> SpamResult:
    reasons: List[str] = []
    score = 0.0

    # 一条帖子挂一堆 ticker
    if features.symbols_tagged_count >= rules.ticker_stuffing_min:
        score = max(score, rules.ticker_stuffing_score)
        reasons.append("ticker_stuffing")

    # cashtag 密度
    density = features.cashtag_count / features.token_count if features.token_count > 0 else 0.0
    if features.cashtag_count >= rules.cashtag_min and density >= rules.cashtag_density_min:
        score = max(score, rules.cashtag_density_score)
        reasons.append("cashtag_density")

    # 引流关键词（低权重）
    if rules.promo_pattern.search(features.body):
        score = max(score, rules.promo_score)
        reasons.append("promo_keywords")

    # 同一段文本在多个 ticker 下刷屏
    if features.duplicate_symbols_count >= rules.duplicate_symbol_threshold:
        score = max(score, rules.duplicate_score)
        reasons.append("cross_ticker_duplicate")

    # 新号 + 粉丝少 + 短帖
    if (
        features.followers <= rules.low_rep_max_followers
        and features.account_age_days is not None
        and features.account_age_days <= rules.low_rep_max_age_days
        and len(features.body) <= rules.low_rep_max_body_len
    ):
        score = max(score, rules.low_rep_score)
        reasons.append("low_rep_short_post")

    return SpamResult(score=min(1.0, score), reasons=reasons)
