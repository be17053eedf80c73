# StockTwits stream JSON 解析器
# 只做“取字段 + 兜底默认值”，不打分；打分在 normalizer 里做。

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class RawLink:
    url: str
    title: Optional[str] = None
    source: Optional[str] = None


@dataclass(frozen=True)
class RawMessage:
    """
    provider 原始消息的中间形态：字段都已经是确定类型，缺失的给默认值。
    id <= 0 表示原始数据里没有可用 id（调用方会丢弃）。
    """
    id: int
    created_at: str
    body: str
    has_media: bool = False
    user_id: int = 0
    username: str = "unknown"
    followers: int = 0
    join_date: Optional[str] = None
    official: bool = False
    symbols: List[str] = field(default_factory=list)
    # symbol -> watchlist_count（消息里带的话）
    watchlist_counts: Dict[str, int] = field(default_factory=dict)
    links: List[RawLink] = field(default_factory=list)
    user_sentiment: Optional[str] = None
    likes: int = 0
    replies: int = 0


@dataclass(frozen=True)
class StreamPage:
    messages: List[RawMessage]
    has_more: bool = False
    watchers: Optional[int] = None


def _as_dict(v: Any) -> Dict[str, Any]:
    return v if isinstance(v, dict) else {}


def _as_int(v: Any, default: int = 0) -> int:
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _as_str(v: Any) -> str:
    if v is None:
        return ""
    return v if isinstance(v, str) else str(v)


def parse_raw_message(obj: Any) -> RawMessage:
    """
    解析单条消息。任何字段缺失或类型不对都用默认值，不抛异常。
    """
    m = _as_dict(obj)
    user = _as_dict(m.get("user"))
    entities = _as_dict(m.get("entities"))

    media = entities.get("media")
    has_media = isinstance(media, list) and len(media) > 0

    symbols: List[str] = []
    watchlist_counts: Dict[str, int] = {}
    for s in m.get("symbols") or []:
        s = _as_dict(s)
        sym = _as_str(s.get("symbol")).strip().upper()
        if not sym:
            continue
        symbols.append(sym)
        if s.get("watchlist_count") is not None:
            wc = _as_int(s.get("watchlist_count"), -1)
            if wc >= 0:
                watchlist_counts[sym] = wc

    links: List[RawLink] = []
    raw_links = m.get("links")
    for l in raw_links if isinstance(raw_links, list) else []:
        l = _as_dict(l)
        url = _as_str(l.get("url") or l.get("shortened_url")).strip()
        if not url:
            continue
        title = l.get("title")
        source = _as_dict(l.get("source")).get("name") if isinstance(l.get("source"), dict) else l.get("source")
        links.append(RawLink(
            url=url,
            title=str(title) if title else None,
            source=str(source) if source else None,
        ))

    # 作者标签有两种位置：entities.sentiment.basic 或 sentiment.basic
    basic = _as_dict(entities.get("sentiment")).get("basic") or _as_dict(m.get("sentiment")).get("basic")
    user_sentiment = basic if basic in ("Bullish", "Bearish") else None

    join_date = user.get("join_date")

    return RawMessage(
        id=_as_int(m.get("id")),
        created_at=_as_str(m.get("created_at")).strip(),
        body=_as_str(m.get("body")).strip(),
        has_media=has_media,
        user_id=_as_int(user.get("id")),
        username=_as_str(user.get("username")).strip() or "unknown",
        followers=max(0, _as_int(user.get("followers"))),
        join_date=str(join_date) if join_date else None,
        official=bool(user.get("official")),
        symbols=symbols,
        watchlist_counts=watchlist_counts,
        links=links,
        user_sentiment=user_sentiment,
        likes=_as_int(_as_dict(m.get("likes")).get("total")),
        replies=_as_int(_as_dict(m.get("conversation")).get("replies")),
    )


def parse_stream_page(obj: Union[Dict, List, None]) -> StreamPage:
    """
    解析 /streams/symbol/{SYM}.json 的整页响应：
    {
        "symbol": {"symbol": "RCAT", "watchlist_count": 12345},
        "cursor": {"more": true, "since": 1, "max": 100},
        "messages": [...]
    }
    """
    if isinstance(obj, list):
        items = obj
        top: Dict[str, Any] = {}
    else:
        top = _as_dict(obj)
        items = top.get("messages") if isinstance(top.get("messages"), list) else []

    messages = [parse_raw_message(x) for x in items if isinstance(x, dict)]

    more = _as_dict(top.get("cursor")).get("more")
    watchers = None
    wc = _as_dict(top.get("symbol")).get("watchlist_count")
    if wc is not None:
        n = _as_int(wc, -1)
        watchers = n if n >= 0 else None

    return StreamPage(messages=messages, has_more=bool(more), watchers=watchers)
