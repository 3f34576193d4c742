"""
Venue adapters used by the exit core: price feed, bar source, order gateway.
Transport and payload failures are translated here into Unavailable /
OrderRejected, so the core only ever sees canonical types.
"""

from __future__ import annotations
import asyncio
from decimal import Decimal
from typing import List, TYPE_CHECKING
import aiohttp
import logging

from core.errors import OrderRejected, Unavailable
from exchange.dbot_rest import DbotApiError
from exchange.models import Bar, OrderAck

if TYPE_CHECKING:
    from exchange.dbot_rest import DbotRestClient

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, DbotApiError, ValueError)

# Order statuses meaning nothing was (or will be) filled
DEAD_ORDER_STATUSES = {"rejected", "failed", "cancelled", "canceled", "expired", "error"}


class DbotPriceFeed:
    """Latest pool price via the pool search endpoint."""

    def __init__(self, client: "DbotRestClient"):
        self.client = client

    async def fetch_latest_price(self, pair_id: str) -> Decimal:
        try:
            pools = await self.client.search_pools(pair_id)
        except TRANSPORT_ERRORS as e:
            raise Unavailable(f"price fetch failed for {pair_id}: {e}") from e

        if not pools:
            raise Unavailable(f"no pool returned for {pair_id}")

        pool = next((p for p in pools if p.pair_id == pair_id), None)
        if pool is None:
            raise Unavailable(f"{pair_id} not in search results")
        if pool.token_price is None or pool.token_price <= 0:
            raise Unavailable(f"no usable price for {pair_id}: {pool.token_price}")
        return pool.token_price


class DbotBarSource:
    """Recent OHLC bars for volatility estimation."""

    def __init__(self, client: "DbotRestClient"):
        self.client = client

    async def fetch_recent_bars(self, pair_id: str, interval: str, limit: int) -> List[Bar]:
        """Bars sorted oldest-first. Malformed records are dropped."""
        try:
            raw_bars = await self.client.get_klines(pair_id, interval, limit)
        except TRANSPORT_ERRORS as e:
            raise Unavailable(f"bar fetch failed for {pair_id}: {e}") from e

        bars = []
        for raw in raw_bars:
            bar = Bar.from_payload(raw)
            if bar is None:
                logger.warning(f"[BARS] Bad kline data: {raw}")
                continue
            bars.append(bar)

        bars.sort(key=lambda b: b.timestamp)
        return bars[-limit:] if limit > 0 else bars


class DbotOrderGateway:
    """Submits IOC sell orders sized as a fraction of the unit position."""

    def __init__(
        self,
        client: "DbotRestClient",
        position_size: Decimal,
        chain: str = "solana",
        slippage_bps: int = 250,
    ):
        self.client = client
        self.position_size = position_size
        self.chain = chain
        self.slippage_bps = slippage_bps

    async def submit_exit(self, pair_id: str, fraction: Decimal, limit_price: Decimal) -> OrderAck:
        size = self.position_size * fraction
        try:
            result = await self.client.place_order(
                pair_id=pair_id,
                side="sell",
                price=limit_price,
                size=size,
                chain=self.chain,
                time_in_force="IOC",
                slippage_bps=self.slippage_bps,
            )
        except TRANSPORT_ERRORS as e:
            raise OrderRejected(f"order submission failed: {e}") from e

        if result.get("err") or result.get("error"):
            raise OrderRejected(f"order refused: {result.get('msg') or result.get('error')}")

        ack = OrderAck.from_payload(result.get("res", result))
        if ack is None:
            raise OrderRejected(f"no orderId in response: {str(result)[:200]}")
        if ack.status.lower() in DEAD_ORDER_STATUSES:
            raise OrderRejected(f"order {ack.order_id} {ack.status}", status=ack.status)
        return ack
