# -*- coding: utf-8 -*-
"""
stcd/sentiment.py
词典情绪打分：纯函数，无 I/O。

流程：
- 分词：去 URL，$TICKER 折叠成占位符，小写，去标点（保留 '-'，让 s-3 这种词能命中）
- 去停用词
- 命中正/负词典的词，看它前面最多 3 个词：
    否定词 -> 以 0 为中点翻转
    强调词 -> 乘 1.25
- 所有命中取平均，再除以词典最大权重，截断到 [-1, 1]
- 空文本 / 纯图片 / 无命中 -> 严格的 neutral 0.0

词典是不可变的 Lexicon，作为参数传入，测试里可以换掉。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import FrozenSet, List, Mapping, Optional, Union

import yaml

from stcd.models import SentimentResult

NEUTRAL = SentimentResult(score=0.0, label="neutral")

BULL_CUTOFF = 0.15
NEGATION_WINDOW = 3
INTENSITY_MULTIPLIER = 1.25

_URL_RE = re.compile(r"https?://\S+")
_CASHTAG_RE = re.compile(r"\$[a-zA-Z]{1,6}")
_NON_WORD_RE = re.compile(r"[^a-z0-9\s\-]")
_TICKER_PLACEHOLDER = "xtickerx"


@dataclass(frozen=True)
class Lexicon:
    weights: Mapping[str, float]
    stop_words: FrozenSet[str]
    negations: FrozenSet[str]
    intensifiers: FrozenSet[str]

    @property
    def scale(self) -> float:
        if not self.weights:
            return 1.0
        return max(abs(w) for w in self.weights.values()) or 1.0


def make_lexicon(positive: Mapping[str, float], negative: Mapping[str, float],
                 stop_words, negations, intensifiers) -> Lexicon:
    weights = {str(k).lower(): float(v) for k, v in positive.items()}
    # 负面词一律存成负数，yml 里写正数也可以
    weights.update({str(k).lower(): -abs(float(v)) for k, v in negative.items()})
    return Lexicon(
        weights=MappingProxyType(weights),
        stop_words=frozenset(s.lower() for s in stop_words),
        negations=frozenset(s.lower() for s in negations),
        intensifiers=frozenset(s.lower() for s in intensifiers),
    )


_POSITIVE = {
    "beat": 2, "beats": 2, "guidance": 1.5, "upgrade": 2, "upgraded": 2,
    "contract": 2.5, "award": 2.5, "orders": 2, "order": 2, "partnership": 2,
    "revenue": 1.5, "growth": 2, "profitable": 2.5, "profit": 2,
    "approved": 2.5, "approval": 2.5, "faa": 1.5, "certification": 2,
    "bull": 1.5, "bullish": 2, "rip": 1.5, "moon": 2,
}

_NEGATIVE = {
    "miss": 2, "missed": 2, "downgrade": 2, "downgraded": 2,
    "offering": 3, "dilution": 3, "dilutive": 3, "s-3": 2.5,
    "reverse": 2, "split": 1.5, "bankrupt": 4, "fraud": 4,
    "bear": 1.5, "bearish": 2, "dump": 2.5, "rug": 3,
    "lawsuit": 2.5, "investigation": 2.5,
}

_STOP_WORDS = [
    "the", "a", "an", "and", "or", "to", "of", "in", "on", "for", "with", "is", "are", "was", "were", "be", "been",
    "this", "that", "it", "as", "at", "by", "from", "im", "we", "you", "they", "i", "me", "my", "our", "your", "their",
]

DEFAULT_LEXICON = make_lexicon(
    _POSITIVE,
    _NEGATIVE,
    _STOP_WORDS,
    negations=["not", "no", "never", "dont", "isnt", "wont"],
    intensifiers=["very", "huge", "massive", "extremely"],
)


def load_lexicon(path: Union[str, Path, None] = None) -> Lexicon:
    """
    读取 ops/lexicon.yml，在内置词典基础上扩充；文件不存在就用内置。
    只在进程启动时调用一次。
    """
    p = Path(path) if path else Path(__file__).resolve().parents[1] / "ops" / "lexicon.yml"
    if not p.exists():
        return DEFAULT_LEXICON
    with open(p, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    positive = {**_POSITIVE, **(data.get("positive") or {})}
    negative = {**_NEGATIVE, **(data.get("negative") or {})}
    print(f"[sentiment] 词典已加载: {p.name} (+{len(positive) + len(negative)} 词)")
    return make_lexicon(
        positive,
        negative,
        list(_STOP_WORDS) + list(data.get("stop_words") or []),
        negations=list(DEFAULT_LEXICON.negations) + list(data.get("negations") or []),
        intensifiers=list(DEFAULT_LEXICON.intensifiers) + list(data.get("intensifiers") or []),
    )


def tokenize(raw: str) -> List[str]:
    text = _URL_RE.sub(" ", raw.lower())
    text = _CASHTAG_RE.sub(f" {_TICKER_PLACEHOLDER} ", text)
    text = _NON_WORD_RE.sub(" ", text)
    return [t for t in text.split() if t]


def label_for(score: float) -> str:
    if score > BULL_CUTOFF:
        return "bull"
    if score < -BULL_CUTOFF:
        return "bear"
    return "neutral"


def score_sentiment(body: Optional[str], lexicon: Lexicon = DEFAULT_LEXICON) -> SentimentResult:
    text = (body or "").strip()
    if not text:
        return NEUTRAL

    toks = tokenize(text)
    hits: List[float] = []
    for i, t in enumerate(toks):
        if t in lexicon.stop_words:
            continue
        w = lexicon.weights.get(t)
        if w is None:
            continue

        prev = toks[max(0, i - NEGATION_WINDOW):i]
        if any(p in lexicon.negations for p in prev):
            w = -w
        if any(p in lexicon.intensifiers for p in prev):
            w *= INTENSITY_MULTIPLIER
        hits.append(w)

    if not hits:
        return NEUTRAL

    score = sum(hits) / len(hits) / lexicon.scale
    score = max(-1.0, min(1.0, score))
    return SentimentResult(score=score, label=label_for(score))


# --------- 最终情绪指数（0-100，作者标签优先） ---------

def model_score_to_index(score: float) -> int:
    try:
        s = float(score)
    except (TypeError, ValueError):
        s = 0.0
    if s != s:  # NaN
        s = 0.0
    return max(0, min(100, round((s + 1) * 50)))


def label_from_index(index: int) -> str:
    if index >= 55:
        return "bull"
    if index <= 45:
        return "bear"
    return "neutral"


def final_sentiment(user_tag: Optional[str], model_score: float):
    """返回 (index, label)。作者自己标了 Bullish/Bearish 时以标签为准。"""
    if user_tag == "Bullish":
        index = 75
    elif user_tag == "Bearish":
        index = 25
    else:
        index = model_score_to_index(model_score)
    return index, label_from_index(index)
