# 工具模块：时间换算、环境变量读取

import os
import time
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional


def now_ms() -> int:
    """
    获取当前时间的UTC毫秒时间戳
    """
    return int(time.time() * 1000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """datetime -> 'YYYY-MM-DDTHH:MM:SS.mmmZ'（统一 UTC）"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso(s: Optional[str]) -> Optional[datetime]:
    """
    解析 ISO 时间字符串；解析失败返回 None（调用方自行决定默认值）。
    兼容结尾的 'Z'，无时区的一律当作 UTC。
    """
    if not s or not isinstance(s, str):
        return None
    try:
        dt = datetime.fromisoformat(s.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_utc_date(dt: datetime) -> str:
    """datetime -> 'YYYY-MM-DD'（UTC 日期，分天存储的 key）"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).date().isoformat()


def days_back_list(range_days: int, today: Optional[date] = None) -> List[str]:
    """
    返回最近 range_days 天的日期列表（含今天），按时间升序。
    """
    if today is None:
        today = utc_now().date()
    return [(today - timedelta(days=i)).isoformat() for i in range(range_days - 1, -1, -1)]


def env_int(name: str, fallback: int) -> int:
    v = os.environ.get(name)
    if not v:
        return fallback
    try:
        return int(float(v))
    except ValueError:
        return fallback


def env_float(name: str, fallback: float) -> float:
    v = os.environ.get(name)
    if not v:
        return fallback
    try:
        return float(v)
    except ValueError:
        return fallback
