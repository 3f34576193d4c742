"""
dbot Exit Bot — Configuration
All tunable parameters in one place.
"""

import os
from decimal import Decimal
from dataclasses import dataclass, field
from typing import List, Tuple


@dataclass
class ExitConfig:
    grid_step_pct: Decimal = Decimal("0.015")       # Characteristic grid spacing
    min_take_profit_pct: Decimal = Decimal("0.02")
    max_take_profit_pct: Decimal = Decimal("0.05")
    atr_multiplier: Decimal = Decimal("1.4")        # k1
    grid_multiplier: Decimal = Decimal("1.6")       # m1
    trail_multiplier: Decimal = Decimal("0.6")      # k2
    min_trail_pct: Decimal = Decimal("0.008")
    max_trail_pct: Decimal = Decimal("0.03")
    hard_stop_loss_pct: Decimal = Decimal("0.12")
    max_hold_sec: float = 3600.0
    ladder_fractions: List[Decimal] = field(default_factory=lambda: [
        Decimal("0.4"), Decimal("0.2"), Decimal("0.2"), Decimal("0.2"),
    ])
    bar_interval: str = "1m"            # Bars used for volatility
    bar_limit: int = 30


@dataclass
class ExecutionConfig:
    poll_interval_sec: float = 3.0
    ioc_skew_bps: int = 200             # Limit price = price * (1 - skew)
    slippage_bps: int = 250
    position_size: Decimal = Decimal("0.01")    # Unit position size (fraction 1.0)
    chain: str = "solana"
    dry_run: bool = True                # Paper mode — log exits, no real orders


@dataclass
class ExchangeConfig:
    api_key: str = ""
    data_base_url: str = "https://api-data-v1.dbotx.com"
    trade_base_url: str = "https://api-bot-v1.dbotx.com"
    request_timeout_sec: float = 10.0


@dataclass
class NotificationConfig:
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    enabled: bool = True


def _decimal_list(raw: str) -> List[Decimal]:
    return [Decimal(part.strip()) for part in raw.split(",") if part.strip()]


# (env var, section, attribute, parser)
_ENV_OVERRIDES: List[Tuple[str, str, str, type]] = [
    ("GRID_STEP_PCT", "exits", "grid_step_pct", Decimal),
    ("MIN_TP_PCT", "exits", "min_take_profit_pct", Decimal),
    ("MAX_TP_PCT", "exits", "max_take_profit_pct", Decimal),
    ("ATR_MULTIPLIER", "exits", "atr_multiplier", Decimal),
    ("GRID_MULTIPLIER", "exits", "grid_multiplier", Decimal),
    ("TRAIL_MULTIPLIER", "exits", "trail_multiplier", Decimal),
    ("MIN_TRAIL_PCT", "exits", "min_trail_pct", Decimal),
    ("MAX_TRAIL_PCT", "exits", "max_trail_pct", Decimal),
    ("HARD_STOP_LOSS_PCT", "exits", "hard_stop_loss_pct", Decimal),
    ("MAX_HOLD_SEC", "exits", "max_hold_sec", float),
    ("BAR_INTERVAL", "exits", "bar_interval", str),
    ("BAR_LIMIT", "exits", "bar_limit", int),
    ("POLL_INTERVAL_SEC", "execution", "poll_interval_sec", float),
    ("IOC_SKEW_BPS", "execution", "ioc_skew_bps", int),
    ("SLIPPAGE_BPS", "execution", "slippage_bps", int),
    ("POSITION_SIZE", "execution", "position_size", Decimal),
]


@dataclass
class BotConfig:
    exits: ExitConfig = field(default_factory=ExitConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load config with environment variable overrides."""
        config = cls()
        config.exchange.api_key = os.getenv("DBOT_API_KEY", "")
        config.notifications.telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "")
        config.notifications.telegram_chat_id = os.getenv("TELEGRAM_CHAT_ID", "")
        config.log_level = os.getenv("LOG_LEVEL", "INFO")
        config.execution.dry_run = os.getenv("DRY_RUN", "true").lower() == "true"

        for env_name, section, attr, parser in _ENV_OVERRIDES:
            raw = os.getenv(env_name)
            if raw:
                setattr(getattr(config, section), attr, parser(raw))

        fractions = os.getenv("LADDER_FRACTIONS")
        if fractions:
            config.exits.ladder_fractions = _decimal_list(fractions)
        return config
