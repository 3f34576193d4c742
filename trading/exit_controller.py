"""
Exit Controller — the per-position exit state machine.

Every price observation is evaluated in a fixed priority order:
  0. Manual abort requested  → MANUAL exit of the remainder
  1. Held longer than max    → TIMEOUT exit of the remainder
  2. Price ≤ hard stop level → HARD_STOP_LOSS exit of the remainder
  3. Raise the high-water mark
  4. Fire every ladder rung the price has reached (partial take-profits)
  5. Price ≤ high-water × (1 − trail) → TRAILING_STOP exit of the remainder

INVARIANT: once Exited, the controller must not be ticked again.
The remaining fraction is debited when an action is emitted, not when it
fills; `reconcile_rejection` re-credits it if the venue refuses the order.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import List, Optional, Tuple
from exchange.models import ExitAction, ExitKind, ExitPlan
import logging

logger = logging.getLogger(__name__)

EPSILON = Decimal("1e-9")
ONE = Decimal("1")


@dataclass(frozen=True)
class ExitRules:
    """Safety rails and execution skew applied on top of the plan."""
    hard_stop_loss_pct: Decimal
    max_hold_sec: float
    ioc_skew_bps: int

    def skewed(self, price: Decimal) -> Decimal:
        """Shift a price down so an IOC sell crosses the book."""
        return price * (ONE - Decimal(self.ioc_skew_bps) / Decimal("10000"))


@dataclass(frozen=True)
class RunState:
    entry_price: Decimal
    high_water_price: Decimal
    remaining_fraction: Decimal
    next_ladder_index: int
    start_time: float
    exited: bool = False
    exit_kind: Optional[ExitKind] = None
    retry_rungs: Tuple[int, ...] = ()      # Rejected rungs awaiting a re-fire

    @classmethod
    def initial(cls, entry_price: Decimal, start_time: float) -> "RunState":
        return cls(
            entry_price=entry_price,
            high_water_price=entry_price,
            remaining_fraction=ONE,
            next_ladder_index=0,
            start_time=start_time,
        )


def _exit_all(state: RunState, kind: ExitKind, price: Decimal, rules: ExitRules) -> Tuple[RunState, List[ExitAction]]:
    action = ExitAction(
        kind=kind,
        fraction=state.remaining_fraction,
        limit_price=rules.skewed(price),
        trigger_price=price,
    )
    new_state = replace(
        state,
        remaining_fraction=Decimal("0"),
        exited=True,
        exit_kind=kind,
    )
    return new_state, [action]


def _take_profit(rung: int, fraction: Decimal, price: Decimal, rules: ExitRules) -> ExitAction:
    return ExitAction(
        kind=ExitKind.PARTIAL_TAKE_PROFIT,
        fraction=fraction,
        limit_price=rules.skewed(price),
        trigger_price=price,
        rung=rung,
    )


def step(
    state: RunState,
    plan: ExitPlan,
    rules: ExitRules,
    price: Decimal,
    elapsed: float,
    abort: bool = False,
) -> Tuple[RunState, List[ExitAction]]:
    """
    Pure transition: returns the next state and the actions decided on
    this observation (empty list when nothing fires).
    """
    if state.exited:
        raise RuntimeError("exit controller already exited; no further ticks allowed")

    if abort:
        return _exit_all(state, ExitKind.MANUAL, price, rules)

    if elapsed > rules.max_hold_sec:
        return _exit_all(state, ExitKind.TIMEOUT, price, rules)

    if price <= state.entry_price * (ONE - rules.hard_stop_loss_pct):
        return _exit_all(state, ExitKind.HARD_STOP_LOSS, price, rules)

    high_water = max(state.high_water_price, price)
    remaining = state.remaining_fraction
    next_index = state.next_ladder_index
    ladder = plan.ladder
    actions: List[ExitAction] = []

    # Rungs the venue refused earlier get another chance first
    still_waiting = []
    for rung in state.retry_rungs:
        if remaining > 0 and price >= ladder[rung].price_level:
            amount = min(ladder[rung].exit_fraction, remaining)
            actions.append(_take_profit(rung, amount, price, rules))
            remaining -= amount
        else:
            still_waiting.append(rung)

    while next_index < len(ladder) and price >= ladder[next_index].price_level and remaining > 0:
        amount = min(ladder[next_index].exit_fraction, remaining)
        actions.append(_take_profit(next_index, amount, price, rules))
        remaining -= amount
        next_index += 1

    state = replace(
        state,
        high_water_price=high_water,
        remaining_fraction=remaining,
        next_ladder_index=next_index,
        retry_rungs=tuple(still_waiting),
    )

    if remaining < EPSILON:
        return replace(state, exited=True, exit_kind=ExitKind.PARTIAL_TAKE_PROFIT), actions

    if price <= high_water * (ONE - plan.trail_pct):
        state, trail_actions = _exit_all(state, ExitKind.TRAILING_STOP, price, rules)
        actions.extend(trail_actions)

    return state, actions


class ExitController:
    """
    Owns the RunState of one position and advances it one observation
    at a time. Exactly one caller (the exit loop) may tick it.
    """

    def __init__(self, plan: ExitPlan, rules: ExitRules, start_time: float):
        self.plan = plan
        self.rules = rules
        self._state = RunState.initial(plan.entry_price, start_time)
        self._abort_requested = False

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_exited(self) -> bool:
        return self._state.exited

    @property
    def remaining_fraction(self) -> Decimal:
        return self._state.remaining_fraction

    def elapsed(self, now: float) -> float:
        return now - self._state.start_time

    def request_abort(self):
        """Exit whatever remains on the next tick, ahead of every other rule."""
        if not self._abort_requested:
            logger.warning("[EXIT] Manual abort requested")
        self._abort_requested = True

    def tick(self, price: Decimal, elapsed: float) -> List[ExitAction]:
        before = self._state
        self._state, actions = step(
            before, self.plan, self.rules, price, elapsed, abort=self._abort_requested,
        )

        for action in actions:
            label = f"TP{action.rung + 1}" if action.rung is not None else action.kind.value
            logger.info(
                f"[EXIT] {label} @ {price} → sell {action.fraction} "
                f"limit {action.limit_price:.10f}"
            )
        if self._state.high_water_price > before.high_water_price:
            logger.debug(f"[EXIT] New high-water {self._state.high_water_price}")
        if self._state.exited:
            logger.info(f"[EXIT] Position exited ({self._state.exit_kind.value})")
        return actions

    def reconcile_rejection(self, action: ExitAction):
        """
        Re-credit an action the venue refused.
        A refused terminal exit reopens the position so the next tick can
        fire it again; a refused rung is queued to re-fire at its level.
        """
        state = self._state
        remaining = min(ONE, state.remaining_fraction + action.fraction)
        retry = state.retry_rungs
        if not action.is_terminal and action.rung not in retry:
            retry = tuple(sorted(retry + (action.rung,)))

        self._state = replace(
            state,
            remaining_fraction=remaining,
            retry_rungs=retry,
            exited=False,
            exit_kind=None,
        )
        logger.warning(
            f"[EXIT] {action.kind.value} rejected, re-credited {action.fraction} "
            f"(remaining {remaining})"
        )
