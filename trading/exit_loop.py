"""
Exit Loop — polls the price feed and drives the exit controller until the
position is fully exited.

One tick per poll. All actions decided on a tick are submitted (in order)
before the next price is fetched. A failed price fetch reuses the last
known price, so the timeout rail still fires under a dead feed.
"""

from __future__ import annotations
import asyncio
import time
from decimal import Decimal
from typing import Awaitable, Callable, List, TYPE_CHECKING
from core.errors import Unavailable
from exchange.models import ExitAction
import logging

if TYPE_CHECKING:
    from config import ExecutionConfig
    from exchange.gateways import DbotPriceFeed
    from trading.exit_controller import ExitController
    from trading.order_executor import OrderExecutor

logger = logging.getLogger(__name__)


class ExitLoop:
    """Single-owner control loop for one position."""

    def __init__(
        self,
        pair_id: str,
        controller: "ExitController",
        price_feed: "DbotPriceFeed",
        executor: "OrderExecutor",
        config: "ExecutionConfig",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pair_id = pair_id
        self.controller = controller
        self.price_feed = price_feed
        self.executor = executor
        self.config = config
        self._clock = clock
        self._sleep = sleep
        self._last_price: Decimal = controller.plan.entry_price
        self._feed_failures = 0
        self.ticks = 0

    @property
    def last_price(self) -> Decimal:
        return self._last_price

    def request_abort(self):
        self.controller.request_abort()

    async def run(self) -> List[ExitAction]:
        """Run until exited. Returns the actions the venue accepted."""
        logger.info(
            f"[LOOP] {self.pair_id}: Watching exits every {self.config.poll_interval_sec}s "
            f"(entry {self.controller.plan.entry_price})"
        )
        accepted: List[ExitAction] = []

        while not self.controller.is_exited:
            price = await self._poll_price()
            elapsed = self.controller.elapsed(self._clock())
            actions = self.controller.tick(price, elapsed)
            self.ticks += 1

            for action in actions:
                ack = await self.executor.execute(action)
                if ack is None:
                    self.controller.reconcile_rejection(action)
                else:
                    accepted.append(action)

            if self.controller.is_exited:
                break
            await self._sleep(self.config.poll_interval_sec)

        logger.info(
            f"[LOOP] {self.pair_id}: Done after {self.ticks} ticks "
            f"({len(accepted)} exit orders accepted)"
        )
        return accepted

    async def _poll_price(self) -> Decimal:
        try:
            price = await self.price_feed.fetch_latest_price(self.pair_id)
        except Unavailable as e:
            self._feed_failures += 1
            logger.warning(
                f"[LOOP] {self.pair_id}: Price unavailable ({e}); "
                f"reusing {self._last_price} (failure #{self._feed_failures})"
            )
            return self._last_price

        if self._feed_failures:
            logger.info(f"[LOOP] {self.pair_id}: Price feed recovered after {self._feed_failures} failures")
        self._feed_failures = 0
        self._last_price = price
        return price
