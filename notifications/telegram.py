"""
Telegram Notifier — Sends exit plan, exit order and lifecycle alerts.
"""

from __future__ import annotations
import aiohttp
from typing import Optional, TYPE_CHECKING
import logging

if TYPE_CHECKING:
    from exchange.models import ExitAction, ExitPlan, OrderAck

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Sends messages via Telegram Bot API."""

    def __init__(self, bot_token: str, chat_id: str, enabled: bool = True):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.enabled = enabled and bool(bot_token) and bool(chat_id)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def send(self, message: str, parse_mode: str = "HTML"):
        """Send a message to the configured chat."""
        if not self.enabled:
            logger.debug(f"[TG] (disabled) Would send: {message[:100]}...")
            return

        try:
            session = await self._get_session()
            url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
            payload = {
                "chat_id": self.chat_id,
                "text": message,
                "parse_mode": parse_mode,
                "disable_web_page_preview": True,
            }

            async with session.post(url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    logger.warning(f"[TG] Send failed ({resp.status}): {body[:200]}")
                else:
                    logger.debug(f"[TG] Sent: {message[:80]}...")

        except Exception as e:
            logger.warning(f"[TG] Error sending message: {e}")

    async def send_plan(self, pair_id: str, plan: "ExitPlan"):
        """Send the computed exit plan."""
        rungs = "\n".join(
            f"TP{i + 1}: <code>{rung.price_level:.10f}</code> ({rung.exit_fraction:.0%})"
            for i, rung in enumerate(plan.ladder)
        )
        msg = (
            f"🎯 <b>EXIT PLAN</b>\n\n"
            f"Pair: <code>{pair_id}</code>\n"
            f"Entry: <code>{plan.entry_price}</code>\n"
            f"Vol: {plan.volatility_pct:.2%} | TP: {plan.take_profit_pct:.2%} | "
            f"Trail: {plan.trail_pct:.2%}\n\n"
            f"{rungs}"
        )
        await self.send(msg)

    async def send_exit(self, pair_id: str, action: "ExitAction", ack: "OrderAck"):
        """Send exit order notification."""
        emoji = "🔻" if action.is_terminal else "✅"
        label = f"TP{action.rung + 1}" if action.rung is not None else action.kind.value
        msg = (
            f"{emoji} <b>EXIT — {label}</b>\n\n"
            f"Pair: <code>{pair_id}</code>\n"
            f"Sold: {action.fraction:.0%} of position\n"
            f"Trigger: <code>{action.trigger_price}</code>\n"
            f"Limit: <code>{action.limit_price:.10f}</code>\n"
            f"Order: <code>{ack.order_id}</code> ({ack.status})"
        )
        await self.send(msg)

    async def send_exit_rejected(self, pair_id: str, action: "ExitAction", reason: str):
        """Send exit rejection warning."""
        msg = (
            f"⚠️ <b>EXIT REJECTED — {action.kind.value}</b>\n"
            f"Pair: <code>{pair_id}</code>\n"
            f"Reason: {reason[:200]}\n"
            f"Will retry on the next trigger."
        )
        await self.send(msg)

    async def send_bot_status(self, status: str):
        """Send bot lifecycle status."""
        await self.send(f"🤖 <b>BOT</b>: {status}")
