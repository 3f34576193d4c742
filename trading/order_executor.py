"""
Order Executor — Turns decided exit actions into IOC sell orders.

Dry run: actions are logged and acknowledged locally, nothing is sent.
Live: a rejection is logged and reported, never raised; the caller
re-credits the controller so the exit can fire again.
"""

from __future__ import annotations
import uuid
from typing import Optional, TYPE_CHECKING
from core.errors import OrderRejected
from exchange.models import ExitAction, OrderAck
import logging

if TYPE_CHECKING:
    from config import ExecutionConfig
    from exchange.gateways import DbotOrderGateway
    from notifications.telegram import TelegramNotifier

logger = logging.getLogger(__name__)


class OrderExecutor:
    """Submits exit orders for one pair, one at a time."""

    def __init__(
        self,
        gateway: "DbotOrderGateway",
        pair_id: str,
        config: "ExecutionConfig",
        notifier: Optional["TelegramNotifier"] = None,
    ):
        self.gateway = gateway
        self.pair_id = pair_id
        self.config = config
        self.notifier = notifier

    async def execute(self, action: ExitAction) -> Optional[OrderAck]:
        """
        Submit one exit. Returns the ack, or None if the venue refused it.
        """
        if self.config.dry_run:
            ack = OrderAck(order_id=f"dry-{uuid.uuid4().hex[:12]}", status="DRY_RUN")
            logger.info(
                f"[EXEC] {self.pair_id}: (dry run) {action.kind.value} "
                f"sell {action.fraction} @ {action.limit_price:.10f}"
            )
            await self._notify_exit(action, ack)
            return ack

        try:
            ack = await self.gateway.submit_exit(self.pair_id, action.fraction, action.limit_price)
        except OrderRejected as e:
            logger.error(f"[EXEC] {self.pair_id}: {action.kind.value} rejected: {e}")
            if self.notifier:
                await self.notifier.send_exit_rejected(self.pair_id, action, str(e))
            return None

        logger.info(
            f"[EXEC] {self.pair_id}: {action.kind.value} accepted, "
            f"id={ack.order_id}, status={ack.status}"
        )
        await self._notify_exit(action, ack)
        return ack

    async def _notify_exit(self, action: ExitAction, ack: OrderAck):
        if self.notifier:
            await self.notifier.send_exit(self.pair_id, action, ack)
