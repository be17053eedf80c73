# -*- coding: utf-8 -*-
"""
stcd/models.py
定义持久化的数据模型。所有记录都以 JSON（snake_case 字段）存进 blob store，
to_dict() 写出，from_dict() 读回；读回时字段缺失一律给默认值，不抛异常。

- Message        规范化后的一条帖子（入库后不可变）
- SymbolState    每个 symbol 的同步游标
- DuplicateHashRecord  跨 symbol 重复文本的滑动窗口记录
- DailyAggregate / SeriesStore  每日聚合
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


def _int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _float(v: Any, default: float = 0.0) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _opt_int(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _opt_str(v: Any) -> Optional[str]:
    return v if isinstance(v, str) and v else None


# --------- 打分结果 ---------

@dataclass(frozen=True)
class SentimentResult:
    score: float   # [-1, 1]
    label: str     # bull / bear / neutral


@dataclass(frozen=True)
class SpamResult:
    score: float                       # [0, 1]
    reasons: List[str] = field(default_factory=list)


# --------- 帖子 ---------

@dataclass
class MessageUser:
    id: int
    username: str
    followers: int = 0
    display_name: Optional[str] = None   # 白名单用户的展示名
    join_date: Optional[str] = None
    account_age_days: Optional[int] = None
    official: bool = False


@dataclass
class MessageLink:
    url: str
    title: Optional[str] = None
    source: Optional[str] = None


@dataclass
class Message:
    # 主键：provider 分配的整数 id，同时是全序与幂等键
    id: int
    created_at: str          # ISO-8601 UTC，按它分天
    body: str
    has_media: bool
    user: MessageUser
    sentiment: SentimentResult
    spam: SpamResult
    normalized_hash: Optional[str]
    symbols_tagged: List[str] = field(default_factory=list)
    links: List[MessageLink] = field(default_factory=list)
    # 作者自己打的标签：Bullish / Bearish / None
    user_sentiment: Optional[str] = None
    likes: int = 0
    replies: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Message":
        user = d.get("user") or {}
        sent = d.get("sentiment") or {}
        spam = d.get("spam") or {}
        label = sent.get("label")
        if label not in ("bull", "bear", "neutral"):
            label = "neutral"
        user_sentiment = d.get("user_sentiment")
        if user_sentiment not in ("Bullish", "Bearish"):
            user_sentiment = None
        return cls(
            id=_int(d.get("id")),
            created_at=str(d.get("created_at") or ""),
            body=str(d.get("body") or ""),
            has_media=bool(d.get("has_media", False)),
            user=MessageUser(
                id=_int(user.get("id")),
                username=str(user.get("username") or "unknown"),
                followers=_int(user.get("followers")),
                display_name=_opt_str(user.get("display_name")),
                join_date=_opt_str(user.get("join_date")),
                account_age_days=_opt_int(user.get("account_age_days")),
                official=bool(user.get("official", False)),
            ),
            sentiment=SentimentResult(score=_float(sent.get("score")), label=label),
            spam=SpamResult(
                score=_float(spam.get("score")),
                reasons=[str(r) for r in (spam.get("reasons") or [])],
            ),
            normalized_hash=_opt_str(d.get("normalized_hash")),
            symbols_tagged=[str(s).upper() for s in (d.get("symbols_tagged") or [])],
            links=[
                MessageLink(url=str(l.get("url")), title=_opt_str(l.get("title")), source=_opt_str(l.get("source")))
                for l in (d.get("links") or [])
                if isinstance(l, dict) and l.get("url")
            ],
            user_sentiment=user_sentiment,
            likes=_int(d.get("likes")),
            replies=_int(d.get("replies")),
        )


# --------- 同步游标 ---------

@dataclass
class SymbolState:
    symbol: str
    last_seen_id: Optional[int] = None     # 单调不减；首次同步前为 None
    last_sync_at: Optional[str] = None
    last_watchers: Optional[int] = None
    last_backfill_at: Optional[str] = None
    last_backfill_days: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]], symbol: str) -> "SymbolState":
        d = d or {}
        return cls(
            symbol=str(d.get("symbol") or symbol),
            last_seen_id=_opt_int(d.get("last_seen_id")),
            last_sync_at=_opt_str(d.get("last_sync_at")),
            last_watchers=_opt_int(d.get("last_watchers")),
            last_backfill_at=_opt_str(d.get("last_backfill_at")),
            last_backfill_days=_opt_int(d.get("last_backfill_days")),
        )


# --------- 重复文本记录 ---------

@dataclass
class DuplicateHashRecord:
    hash: str
    symbols: Dict[str, int] = field(default_factory=dict)
    last_seen_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any], hash_: str) -> "DuplicateHashRecord":
        symbols = d.get("symbols") if isinstance(d.get("symbols"), dict) else {}
        return cls(
            hash=str(d.get("hash") or hash_),
            symbols={str(k): _int(v) for k, v in symbols.items()},
            last_seen_at=_opt_str(d.get("last_seen_at")),
        )


# --------- 每日聚合 ---------

@dataclass
class DailyAggregate:
    date: str
    volume_total: int = 0
    volume_clean: int = 0
    sentiment_sum_clean: float = 0.0
    sentiment_count_clean: int = 0
    user_sentiment_sum_clean: float = 0.0
    user_sentiment_count_clean: int = 0
    watchers: Optional[int] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any], date: str) -> "DailyAggregate":
        return cls(
            date=str(d.get("date") or date),
            volume_total=_int(d.get("volume_total")),
            volume_clean=_int(d.get("volume_clean")),
            sentiment_sum_clean=_float(d.get("sentiment_sum_clean")),
            sentiment_count_clean=_int(d.get("sentiment_count_clean")),
            user_sentiment_sum_clean=_float(d.get("user_sentiment_sum_clean")),
            user_sentiment_count_clean=_int(d.get("user_sentiment_count_clean")),
            watchers=_opt_int(d.get("watchers")),
        )


@dataclass
class SeriesStore:
    symbol: str
    updated_at: Optional[str] = None
    days: Dict[str, DailyAggregate] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]], symbol: str) -> "SeriesStore":
        d = d or {}
        days_raw = d.get("days") if isinstance(d.get("days"), dict) else {}
        return cls(
            symbol=str(d.get("symbol") or symbol),
            updated_at=_opt_str(d.get("updated_at")),
            days={k: DailyAggregate.from_dict(v or {}, k) for k, v in days_raw.items()},
        )


@dataclass(frozen=True)
class DailyPoint:
    date: str
    volume_clean: int
    volume_total: int
    sentiment_mean: Optional[float]   # 当天没有 clean 消息时为 None（不是 0）
    watchers: Optional[int]


# --------- 追踪的 ticker ---------

@dataclass(frozen=True)
class TickerConfig:
    symbol: str
    display_name: str
    logo_url: Optional[str] = None
    # username(小写) -> 展示名
    whitelist_users: Dict[str, str] = field(default_factory=dict)
