"""
dbot Exit Bot — Main Orchestrator.
Resolves the pool, plans exits from recent volatility, then runs the exit
loop until the position is closed.

Usage: python main.py <mint-or-pair> [--entry-price PRICE]
"""

from __future__ import annotations
import argparse
import asyncio
import os
import sys
import signal
import time
from decimal import Decimal, InvalidOperation
from typing import Optional
import logging

from dotenv import load_dotenv

from config import BotConfig
from core.errors import InvalidInput, Unavailable
from core.exit_planner import plan_exits
from core.volatility import FALLBACK_VOLATILITY, estimate_volatility
from exchange.dbot_rest import DbotRestClient
from exchange.gateways import DbotBarSource, DbotOrderGateway, DbotPriceFeed, TRANSPORT_ERRORS
from exchange.models import ExitPlan
from notifications.telegram import TelegramNotifier
from trading.exit_controller import ExitController, ExitRules
from trading.exit_loop import ExitLoop
from trading.order_executor import OrderExecutor

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO"):
    os.makedirs("data", exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("data/bot.log"),
        ],
    )


class Bot:
    """Main bot orchestrator."""

    def __init__(self, config: BotConfig, keyword: str, entry_price: Optional[Decimal] = None):
        self.config = config
        self.keyword = keyword
        self.entry_price = entry_price
        self._abort_requested = False
        self.loop: Optional[ExitLoop] = None

        self.client = DbotRestClient(
            api_key=config.exchange.api_key,
            data_base_url=config.exchange.data_base_url,
            trade_base_url=config.exchange.trade_base_url,
            timeout_sec=config.exchange.request_timeout_sec,
        )
        self.notifier = TelegramNotifier(
            bot_token=config.notifications.telegram_bot_token,
            chat_id=config.notifications.telegram_chat_id,
            enabled=config.notifications.enabled,
        )
        self.price_feed = DbotPriceFeed(self.client)
        self.bar_source = DbotBarSource(self.client)
        self.gateway = DbotOrderGateway(
            self.client,
            position_size=config.execution.position_size,
            chain=config.execution.chain,
            slippage_bps=config.execution.slippage_bps,
        )

    @property
    def abort_requested(self) -> bool:
        return self._abort_requested

    def request_abort(self):
        """Exit the remaining position on the next tick."""
        self._abort_requested = True
        if self.loop is not None:
            self.loop.request_abort()

    async def start(self) -> int:
        """Full run. Returns a process exit code."""
        logger.info("=" * 60)
        logger.info(f"   DBOT EXIT BOT — STARTING ({'DRY RUN' if self.config.execution.dry_run else 'LIVE'})")
        logger.info("=" * 60)

        # 1. Resolve the pool
        try:
            pools = await self.client.search_pools(self.keyword)
        except TRANSPORT_ERRORS as e:
            logger.error(f"[BOOT] Pool search failed for {self.keyword}: {e}")
            return 1

        if not pools:
            logger.error(f"[BOOT] No pool found for {self.keyword}")
            return 1
        pool = pools[0]
        logger.info(f"[BOOT] Selected pool: {pool}")

        # 2. Plan exits
        entry_price = self.entry_price if self.entry_price is not None else pool.token_price
        try:
            plan = await self._plan(pool.pair_id, entry_price)
        except InvalidInput as e:
            logger.critical(f"[BOOT] Planning failed, nothing to exit: {e}")
            await self.notifier.send_bot_status(f"Planning failed ❌\n{e}")
            return 1

        await self.notifier.send_plan(pool.pair_id, plan)

        # 3. Run the exit loop
        rules = ExitRules(
            hard_stop_loss_pct=self.config.exits.hard_stop_loss_pct,
            max_hold_sec=self.config.exits.max_hold_sec,
            ioc_skew_bps=self.config.execution.ioc_skew_bps,
        )
        controller = ExitController(plan, rules, start_time=time.monotonic())
        executor = OrderExecutor(self.gateway, pool.pair_id, self.config.execution, self.notifier)
        self.loop = ExitLoop(pool.pair_id, controller, self.price_feed, executor, self.config.execution)
        if self._abort_requested:
            self.loop.request_abort()

        await self.notifier.send_bot_status(f"Watching <code>{pool.pair_id}</code> ✅")
        await self.loop.run()

        kind = controller.state.exit_kind
        await self.notifier.send_bot_status(f"Position exited ({kind.value if kind else 'unknown'}) 🔴")
        return 0

    async def _plan(self, pair_id: str, entry_price: Optional[Decimal]) -> ExitPlan:
        if entry_price is None:
            raise InvalidInput("no entry price given and pool has no price")

        exits = self.config.exits
        try:
            bars = await self.bar_source.fetch_recent_bars(pair_id, exits.bar_interval, exits.bar_limit)
        except Unavailable as e:
            logger.warning(f"[BOOT] {pair_id}: Bars unavailable ({e}); using fallback volatility {FALLBACK_VOLATILITY}")
            bars = []

        volatility = estimate_volatility(bars)
        logger.info(f"[BOOT] {pair_id}: Volatility {volatility:.4%} from {len(bars)} bars")
        return plan_exits(entry_price, volatility, exits.grid_step_pct, exits)

    async def stop(self):
        """Release network resources."""
        await self.client.close()
        await self.notifier.close()
        logger.info("[SHUTDOWN] Complete.")


def _price(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {raw!r}")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Volatility-adaptive exit controller for one position.")
    parser.add_argument("keyword", help="token mint / contract address / pair id")
    parser.add_argument("--entry-price", type=_price, default=None,
                        help="filled entry price (defaults to the pool's current price)")
    return parser.parse_args(argv)


def make_signal_handler(bot: Bot, task: "asyncio.Task"):
    """
    First signal exits the remaining position on the next tick.
    A second signal cancels the run, even if that exit keeps being rejected.
    """
    def handle_signal(sig):
        if bot.abort_requested:
            logger.warning(f"Received signal {sig} again. Shutting down without exiting...")
            task.cancel()
            return
        logger.info(f"Received signal {sig}. Exiting position...")
        bot.request_abort()

    return handle_signal


async def main(argv=None) -> int:
    """Entry point."""
    load_dotenv()
    args = parse_args(argv)
    config = BotConfig.from_env()
    setup_logging(config.log_level)

    if not config.exchange.api_key and not config.execution.dry_run:
        logger.critical("DBOT_API_KEY must be set for live trading!")
        return 1

    bot = Bot(config, args.keyword, args.entry_price)

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        handle_signal = make_signal_handler(bot, asyncio.current_task())
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    try:
        return await bot.start()
    except asyncio.CancelledError:
        logger.warning("[SHUTDOWN] Cancelled before the position was fully exited")
        return 1
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        await bot.stop()


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
