# -*- coding: utf-8 -*-
"""
stcd/config.py
配置：DEFAULT_CFG + ops/config.yml（可选，分节浅合并）+ 环境变量覆盖。
追踪的 ticker 列表来自 ops/tickers.yml（可选，缺省用内置列表）。
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from stcd.errors import UnknownSymbol
from stcd.models import TickerConfig
from stcd.utils import env_float, env_int

ROOT = Path(__file__).resolve().parents[1]

DEFAULT_CFG = {
    "pipeline": {
        "spam_threshold": 0.75,
        "duplicate_window_minutes": 120,
        "duplicate_symbol_threshold": 3,
        "max_pages": 10,
        "retention_days": 420,
        "day_message_cap": 2500,
        "lock_stale_minutes": 10,
        "backfill_max_pages": 500,
        "backfill_default_days": 30,
        "backfill_max_days": 90,
    },
    "scheduler": {
        "interval_sec": 300,   # 每 5 分钟一轮
        "concurrency": 1,
    },
    "storage": {
        "db_path": "stcd.db",
    },
    "source": {
        "base_url": "https://api.stocktwits.com/api/2",
        "timeout_sec": 15.0,
        "user_agent": "stcd/1.0",
    },
}

# 环境变量 -> (分节, 字段, 类型)
_ENV_OVERRIDES = {
    "SPAM_THRESHOLD": ("pipeline", "spam_threshold", float),
    "DUPLICATE_WINDOW_MINUTES": ("pipeline", "duplicate_window_minutes", int),
    "DUPLICATE_SYMBOL_THRESHOLD": ("pipeline", "duplicate_symbol_threshold", int),
    "SYNC_MAX_PAGES": ("pipeline", "max_pages", int),
    "STCD_DB_PATH": ("storage", "db_path", str),
}

DEFAULT_TICKERS = [
    {
        "symbol": "RCAT",
        "display_name": "Red Cat Holdings",
        "logo_url": "https://logos.stocktwits-cdn.com/RCAT.png",
        "whitelist_users": [{"username": "Duckworks", "name": "Jeffrey Thompson (CEO)"}],
    },
    {"symbol": "UMAC", "display_name": "Unusual Machines", "logo_url": "https://logos.stocktwits-cdn.com/UMAC.png"},
    {"symbol": "GRRR", "display_name": "Gorilla Technology", "logo_url": "https://logos.stocktwits-cdn.com/GRRR.png"},
    {"symbol": "ACHR", "display_name": "Archer Aviation", "logo_url": "https://logos.stocktwits-cdn.com/ACHR.png"},
    {"symbol": "FIG", "display_name": "FIG", "logo_url": "https://logos.stocktwits-cdn.com/FIG.png"},
]


def _apply_env(cfg: dict) -> dict:
    for name, (section, field, typ) in _ENV_OVERRIDES.items():
        current = cfg[section][field]
        if typ is int:
            cfg[section][field] = env_int(name, current)
        elif typ is float:
            cfg[section][field] = env_float(name, current)
        else:
            cfg[section][field] = os.environ.get(name) or current
    return cfg


def load_cfg(path: Union[str, Path, None] = None) -> dict:
    """ops/config.yml 可选；不存在就用默认。每个分节只做浅合并。"""
    cfg = {k: dict(v) for k, v in DEFAULT_CFG.items()}
    cfg_path = Path(path) if path else ROOT / "ops" / "config.yml"
    if cfg_path.exists():
        try:
            data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
            for section, values in data.items():
                if section in cfg and isinstance(values, dict):
                    cfg[section] = {**cfg[section], **values}
        except (OSError, yaml.YAMLError) as e:
            print(f"[config] 读取 {cfg_path} 失败，使用默认。err={e}")
    return _apply_env(cfg)


@dataclass(frozen=True)
class PipelineConfig:
    spam_threshold: float = 0.75
    duplicate_window_minutes: int = 120
    duplicate_symbol_threshold: int = 3
    max_pages: int = 10
    retention_days: int = 420
    day_message_cap: int = 2500
    lock_stale_minutes: int = 10
    backfill_max_pages: int = 500
    backfill_default_days: int = 30
    backfill_max_days: int = 90

    @classmethod
    def from_cfg(cls, cfg: Optional[dict] = None) -> "PipelineConfig":
        p = (cfg or load_cfg()).get("pipeline", {})
        return cls(
            spam_threshold=float(p.get("spam_threshold", 0.75)),
            duplicate_window_minutes=int(p.get("duplicate_window_minutes", 120)),
            duplicate_symbol_threshold=int(p.get("duplicate_symbol_threshold", 3)),
            max_pages=int(p.get("max_pages", 10)),
            retention_days=int(p.get("retention_days", 420)),
            day_message_cap=int(p.get("day_message_cap", 2500)),
            lock_stale_minutes=int(p.get("lock_stale_minutes", 10)),
            backfill_max_pages=int(p.get("backfill_max_pages", 500)),
            backfill_default_days=int(p.get("backfill_default_days", 30)),
            backfill_max_days=int(p.get("backfill_max_days", 90)),
        )


# --------- ticker 列表 ---------

def _ticker_from_dict(d: dict) -> TickerConfig:
    symbol = str(d.get("symbol", "")).strip().upper()
    whitelist = {}
    for u in d.get("whitelist_users") or []:
        if isinstance(u, dict) and u.get("username") and u.get("name"):
            whitelist[str(u["username"]).lower()] = str(u["name"])
    return TickerConfig(
        symbol=symbol,
        display_name=str(d.get("display_name") or symbol),
        logo_url=d.get("logo_url"),
        whitelist_users=whitelist,
    )


def load_tickers(path: Union[str, Path, None] = None) -> Dict[str, TickerConfig]:
    """返回 symbol -> TickerConfig（保持配置里的顺序）"""
    p = Path(path) if path else ROOT / "ops" / "tickers.yml"
    raw: List[dict] = DEFAULT_TICKERS
    if p.exists():
        with open(p, "r", encoding="utf-8") as f:
            raw = (yaml.safe_load(f) or {}).get("tickers", []) or []
    out: Dict[str, TickerConfig] = {}
    for d in raw:
        if isinstance(d, dict) and d.get("symbol"):
            t = _ticker_from_dict(d)
            out[t.symbol] = t
    return out


def require_symbol(raw: Optional[str], tickers: Dict[str, TickerConfig]) -> str:
    sym = (raw or "").strip().upper()
    if not sym:
        raise UnknownSymbol("Missing symbol")
    if sym not in tickers:
        raise UnknownSymbol(f"Symbol not allowed: {sym}")
    return sym
