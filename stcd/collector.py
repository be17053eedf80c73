from __future__ import annotations

import os
from typing import List, Optional, Protocol

import httpx

from stcd.errors import ConfigMissing, FetchFailure
from stcd.parsers.stocktwits_json import RawMessage, StreamPage, parse_stream_page

API_BASE = "https://api.stocktwits.com/api/2"


class MessageSource(Protocol):
    """ingest 只依赖这两个方法；测试里用脚本化的假 source 替换。"""

    async def fetch_page(self, symbol: str, max_id: Optional[int] = None) -> StreamPage: ...

    async def extract_watchers(self, symbol: str, messages: List[RawMessage]) -> Optional[int]: ...


# -------------------- StockTwits 实现 --------------------

class StockTwitsSource:
    """
    /streams/symbol/{SYM}.json 按 id 递减翻页：max=上一页最旧 id - 1。
    翻到底时返回空列表（不是异常）；非 200 / 网络错误一律 FetchFailure。
    """

    def __init__(
        self,
        base_url: str = API_BASE,
        timeout_sec: float = 15.0,
        user_agent: str = "stcd/1.0",
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_sec
        self._user_agent = user_agent
        self._access_token = access_token if access_token is not None else os.environ.get("STOCKTWITS_ACCESS_TOKEN", "").strip()
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_cfg(cls, cfg: dict) -> "StockTwitsSource":
        src = cfg.get("source", {})
        return cls(
            base_url=src.get("base_url", API_BASE),
            timeout_sec=float(src.get("timeout_sec", 15.0)),
            user_agent=src.get("user_agent", "stcd/1.0"),
        )

    def _client_get(self) -> httpx.AsyncClient:
        # 复用一个 AsyncClient，避免频繁建连
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
            )
        return self._client

    async def _get_stream(self, symbol: str, params: dict) -> StreamPage:
        url = f"{self._base_url}/streams/symbol/{symbol.upper()}.json"
        try:
            resp = await self._client_get().get(url, params=params)
        except httpx.HTTPError as e:
            print(f"[collector] {symbol} 请求失败: {e!r}")
            raise FetchFailure(symbol, repr(e)) from e

        if resp.status_code != 200:
            detail = (resp.text or "")[:200]
            print(f"[collector] {symbol} 响应失败 status={resp.status_code}")
            raise FetchFailure(symbol, f"http {resp.status_code}: {detail}", resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise FetchFailure(symbol, f"invalid json: {e}") from e
        return parse_stream_page(data)

    async def fetch_page(self, symbol: str, max_id: Optional[int] = None) -> StreamPage:
        params = {}
        if max_id is not None:
            params["max"] = str(max_id)
        return await self._get_stream(symbol, params)

    async def extract_watchers(self, symbol: str, messages: List[RawMessage]) -> Optional[int]:
        """
        尽力而为：先看消息里带的 watchlist_count，再走带 token 的接口；都没有就 None。
        """
        sym = symbol.upper()
        for m in messages:
            if sym in m.watchlist_counts:
                return m.watchlist_counts[sym]
        try:
            return await self.fetch_watchers(sym)
        except ConfigMissing:
            return None
        except FetchFailure as e:
            print(f"[collector] {sym} 关注人数获取失败，忽略: {e}")
            return None

    async def fetch_watchers(self, symbol: str) -> Optional[int]:
        if not self._access_token:
            raise ConfigMissing("STOCKTWITS_ACCESS_TOKEN is not set")
        page = await self._get_stream(symbol, {"access_token": self._access_token, "limit": "1"})
        return page.watchers

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
