# -*- coding: utf-8 -*-
"""
stcd/normalizer.py
RawMessage -> Message 的纯映射。情绪、垃圾分各调用一次；不抛异常。

跨 ticker 刷屏只有一套规则：duplicate_symbols_count 作为特征交给 spam_score，
由其中的 cross_ticker_duplicate 启发式给出 0.95 并写 reason。
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from stcd.models import Message, MessageLink, MessageUser, SpamResult
from stcd.parsers.stocktwits_json import RawMessage
from stcd.sentiment import DEFAULT_LEXICON, NEUTRAL, Lexicon, score_sentiment
from stcd.spam import (
    DEFAULT_SPAM_RULES,
    SpamFeatures,
    SpamRules,
    count_cashtags,
    count_tokens,
    normalized_hash,
    spam_score,
)
from stcd.utils import parse_iso, utc_now


def account_age_days(join_date: Optional[str], now: datetime) -> Optional[int]:
    joined = parse_iso(join_date)
    if joined is None:
        return None
    return int((now - joined).total_seconds() // 86400)


def normalize_message(
    raw: RawMessage,
    duplicate_symbols_count: int = 1,
    display_name: Optional[str] = None,
    *,
    lexicon: Lexicon = DEFAULT_LEXICON,
    rules: SpamRules = DEFAULT_SPAM_RULES,
    now: Optional[datetime] = None,
) -> Message:
    now = now or utc_now()
    body = raw.body
    age = account_age_days(raw.join_date, now)

    if body:
        spam = spam_score(SpamFeatures(
            body=body,
            symbols_tagged_count=len(raw.symbols),
            cashtag_count=count_cashtags(body),
            token_count=count_tokens(body),
            followers=raw.followers,
            account_age_days=age,
            duplicate_symbols_count=duplicate_symbols_count,
        ), rules)
    else:
        spam = SpamResult(score=0.0, reasons=[])

    # 纯图片帖没有文字，情绪按 neutral
    sentiment = NEUTRAL if raw.has_media and not body else score_sentiment(body, lexicon)

    return Message(
        id=raw.id,
        created_at=raw.created_at,
        body=body,
        has_media=raw.has_media,
        user=MessageUser(
            id=raw.user_id,
            username=raw.username,
            followers=raw.followers,
            display_name=display_name or None,
            join_date=raw.join_date,
            account_age_days=age,
            official=raw.official,
        ),
        sentiment=sentiment,
        spam=spam,
        normalized_hash=normalized_hash(body) if body else None,
        symbols_tagged=list(raw.symbols),
        links=[MessageLink(url=l.url, title=l.title, source=l.source) for l in raw.links],
        user_sentiment=raw.user_sentiment,
        likes=raw.likes,
        replies=raw.replies,
    )
