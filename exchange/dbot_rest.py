"""
dbot REST API Client.
Pool search and candles on the data API, order placement on the trade API.
"""

from __future__ import annotations
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional
import aiohttp
import logging

from exchange.models import PoolInfo, unwrap_list

logger = logging.getLogger(__name__)


class DbotApiError(Exception):
    """Non-2xx HTTP answer from the dbot API."""

    def __init__(self, status: int, body: Any):
        super().__init__(f"HTTP {status}: {str(body)[:200]}")
        self.status = status
        self.body = body


class DbotRestClient:
    """Async dbot REST API wrapper."""

    def __init__(
        self,
        api_key: str,
        data_base_url: str,
        trade_base_url: str,
        timeout_sec: float = 10.0,
    ):
        self.api_key = api_key
        self.data_base_url = data_base_url
        self.trade_base_url = trade_base_url
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "X-API-KEY": self.api_key,
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict] = None,
        signed: bool = False,
    ) -> Any:
        """Make an API request; GET params go in the query, POST params in the body."""
        session = await self._get_session()
        headers = self._auth_headers() if signed else {"Content-Type": "application/json"}

        try:
            if method == "GET":
                async with session.get(url, headers=headers, params=params) as resp:
                    data = await resp.json(content_type=None)
                    status = resp.status
            else:
                async with session.post(url, headers=headers, json=params) as resp:
                    data = await resp.json(content_type=None)
                    status = resp.status
        except Exception as e:
            logger.error(f"[REST] {method} {url} Exception: {e}")
            raise

        if status >= 400:
            logger.error(f"[REST] {method} {url} Error: status={status}, body={str(data)[:200]}")
            raise DbotApiError(status, data)
        return data

    # ==================== Data Endpoints ====================

    async def search_pools(self, keyword: str) -> List[PoolInfo]:
        """Search pools by mint / contract address / pair id."""
        data = await self._request(
            "GET", f"{self.data_base_url}/kline/search", {"keyword": keyword},
        )
        pools = []
        for raw in unwrap_list(data):
            pool = PoolInfo.from_payload(raw)
            if pool is not None:
                pools.append(pool)
            else:
                logger.debug(f"[REST] Skipping malformed pool entry: {raw}")
        return pools

    async def get_klines(self, pair_id: str, interval: str, limit: int = 30) -> List[Any]:
        """
        Get recent candle data for a pair.
        Returns raw records; callers parse them into Bar objects.
        """
        data = await self._request(
            "GET", f"{self.data_base_url}/kline/history",
            {"pair": pair_id, "interval": interval, "limit": str(limit)},
        )
        return unwrap_list(data)

    # ==================== Trading Endpoints ====================

    async def place_order(
        self,
        pair_id: str,
        side: str,
        price: Decimal,
        size: Decimal,
        chain: str = "solana",
        time_in_force: str = "IOC",
        slippage_bps: int = 250,
    ) -> Dict[str, Any]:
        """Place a limit order."""
        payload = {
            "chain": chain,
            "pair": pair_id,
            "side": side,
            "type": "limit",
            "price": format(price, "f"),
            "size": format(size, "f"),
            "timeInForce": time_in_force,
            "slippageBps": slippage_bps,
            "clientOrderId": str(uuid.uuid4()),
        }
        logger.info(f"[ORDER] Placing: {side} {payload['size']} {pair_id} @ {payload['price']} ({time_in_force})")
        data = await self._request("POST", f"{self.trade_base_url}/trade/order", payload, signed=True)
        return data if isinstance(data, dict) else {"data": data}
