"""
Exit Planner — take-profit target, trailing band and the partial-exit ladder.

  TP    = clamp(max(k1 × vol, m1 × grid), min_tp, max_tp)
  TRAIL = clamp(max(k2 × TP, grid), min_trail, max_trail)
  TP_n  = entry × (1 + TP + n × grid)     n = 0, 1, 2, ...

Each ladder level exits a fixed fraction of the position, so successive
rungs sit one grid step apart beyond the first target.
"""

from __future__ import annotations
from decimal import Decimal
from typing import List, TYPE_CHECKING
from core.errors import InvalidInput
from core.volatility import clamp
from exchange.models import ExitPlan, LadderRung
import logging

if TYPE_CHECKING:
    from config import ExitConfig

logger = logging.getLogger(__name__)


def take_profit_pct(volatility_pct: Decimal, grid_step_pct: Decimal, config: "ExitConfig") -> Decimal:
    raw = max(config.atr_multiplier * volatility_pct, config.grid_multiplier * grid_step_pct)
    return clamp(raw, config.min_take_profit_pct, config.max_take_profit_pct)


def trail_pct(tp_pct: Decimal, grid_step_pct: Decimal, config: "ExitConfig") -> Decimal:
    raw = max(config.trail_multiplier * tp_pct, grid_step_pct)
    return clamp(raw, config.min_trail_pct, config.max_trail_pct)


def build_ladder(
    entry_price: Decimal,
    tp_pct: Decimal,
    grid_step_pct: Decimal,
    fractions: List[Decimal],
) -> List[LadderRung]:
    """One rung per fraction, starting at TP and stepping up one grid step."""
    rungs = []
    target_pct = tp_pct
    for fraction in fractions:
        rungs.append(LadderRung(
            price_level=entry_price * (Decimal("1") + target_pct),
            exit_fraction=fraction,
        ))
        target_pct += grid_step_pct
    return rungs


def _validate(entry_price: Decimal, grid_step_pct: Decimal, fractions: List[Decimal]):
    if entry_price <= 0:
        raise InvalidInput(f"entry price must be positive, got {entry_price}")
    if grid_step_pct <= 0:
        raise InvalidInput(f"grid step must be positive, got {grid_step_pct}")
    for fraction in fractions:
        if not Decimal("0") < fraction <= Decimal("1"):
            raise InvalidInput(f"ladder fraction {fraction} outside (0, 1]")
    if sum(fractions, Decimal("0")) > Decimal("1"):
        raise InvalidInput(f"ladder fractions sum above 1: {fractions}")


def plan_exits(
    entry_price: Decimal,
    volatility_pct: Decimal,
    grid_step_pct: Decimal,
    config: "ExitConfig",
) -> ExitPlan:
    """
    Compute the immutable exit plan for a filled entry.
    Raises InvalidInput on a non-positive entry price or grid step, or on
    ladder fractions that cannot describe a single position.
    """
    fractions = list(config.ladder_fractions)
    _validate(entry_price, grid_step_pct, fractions)

    tp = take_profit_pct(volatility_pct, grid_step_pct, config)
    ts = trail_pct(tp, grid_step_pct, config)
    ladder = build_ladder(entry_price, tp, grid_step_pct, fractions)

    plan = ExitPlan(
        entry_price=entry_price,
        volatility_pct=volatility_pct,
        take_profit_pct=tp,
        trail_pct=ts,
        ladder=tuple(ladder),
    )

    if ladder:
        logger.info(
            f"[PLAN] Entry={entry_price}, Vol={volatility_pct:.4%}, "
            f"TP={tp:.4%}, Trail={ts:.4%}, "
            f"TP1={ladder[0].price_level:.8f}, TP{len(ladder)}={ladder[-1].price_level:.8f}"
        )
    else:
        logger.info(f"[PLAN] Entry={entry_price}, TP={tp:.4%}, Trail={ts:.4%}, no ladder")
    return plan
