# -*- coding: utf-8 -*-
"""
stcd/errors.py
引擎层面的异常。都在 main.run_one / sync_many 里被接住，转换成每个 symbol 的失败结果，
不会影响批量里的其它 symbol。
"""


class StcdError(Exception):
    pass


class LockContention(StcdError):
    """同一个 symbol 已有同步在跑：直接放弃本次，不排队。"""

    def __init__(self, symbol: str, age_sec: float = 0.0):
        super().__init__(f"Sync already running for {symbol}")
        self.symbol = symbol
        self.age_sec = age_sec


class FetchFailure(StcdError):
    """翻页过程中 provider / 网络出错：中止本次，已合并的页保留。"""

    def __init__(self, symbol: str, detail: str, status: int = 0):
        super().__init__(f"StockTwits stream error for {symbol}: {detail}")
        self.symbol = symbol
        self.status = status


class ConfigMissing(StcdError):
    """缺少可选增强所需的凭据（例如关注人数接口的 token），调用方降级为 None。"""


class UnknownSymbol(StcdError):
    pass
