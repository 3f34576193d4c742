"""
Data models for the dbot exit controller.
Uses Decimal for all price/fraction calculations — no floating point errors.

Venue payloads come with several aliased field names and shapes. The
`from_payload` constructors are the only place that sees raw dicts/lists;
everything past them works on these canonical types.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


class ExitKind(Enum):
    PARTIAL_TAKE_PROFIT = "PARTIAL_TAKE_PROFIT"
    TRAILING_STOP = "TRAILING_STOP"
    HARD_STOP_LOSS = "HARD_STOP_LOSS"
    TIMEOUT = "TIMEOUT"
    MANUAL = "MANUAL"

    @property
    def is_terminal(self) -> bool:
        return self is not ExitKind.PARTIAL_TAKE_PROFIT


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a payload number (str/int/float) into Decimal, None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def _first(payload: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def unwrap_list(payload: Any) -> List[Any]:
    """
    Pull the record list out of a response body.
    Accepts a bare list or a dict wrapping it under data/result/list/items.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "result", "list", "items", "candles"):
            inner = payload.get(key)
            if isinstance(inner, (list, dict)):
                return unwrap_list(inner)
    return []


@dataclass(frozen=True)
class Bar:
    """OHLC price bar."""
    timestamp: int          # Unix ms
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal

    @classmethod
    def from_payload(cls, raw: Any) -> Optional["Bar"]:
        """
        Build a Bar from either [t, o, h, l, c, ...] or a dict using
        long (open/high/...) or short (o/h/l/c) keys. None if malformed.
        """
        if isinstance(raw, (list, tuple)):
            if len(raw) < 5:
                return None
            ts, o, h, l, c = raw[0], raw[1], raw[2], raw[3], raw[4]
        elif isinstance(raw, dict):
            ts = _first(raw, ("timestamp", "time", "t", "ts", "openTime"))
            o = _first(raw, ("open", "o"))
            h = _first(raw, ("high", "h"))
            l = _first(raw, ("low", "l"))
            c = _first(raw, ("close", "c"))
        else:
            return None

        prices = [to_decimal(v) for v in (o, h, l, c)]
        if any(p is None for p in prices):
            return None
        try:
            timestamp = int(ts) if ts is not None else 0
        except (TypeError, ValueError):
            return None
        return cls(timestamp, prices[0], prices[1], prices[2], prices[3])


@dataclass(frozen=True)
class PoolInfo:
    """Venue pool (trading pair) metadata."""
    pair_id: str
    dex: Optional[str] = None
    sol_reserve: Optional[Decimal] = None
    token_reserve: Optional[Decimal] = None
    token_price: Optional[Decimal] = None

    @classmethod
    def from_payload(cls, raw: Any) -> Optional["PoolInfo"]:
        if not isinstance(raw, dict):
            return None
        pair_id = _first(raw, ("pair_id", "pair", "pairId", "id"))
        if pair_id is None:
            return None
        dex = _first(raw, ("dex",))
        return cls(
            pair_id=str(pair_id),
            dex=str(dex) if dex is not None else None,
            sol_reserve=to_decimal(_first(raw, ("sol_reserve", "solReserve"))),
            token_reserve=to_decimal(_first(raw, ("token_reserve", "tokenReserve"))),
            token_price=to_decimal(_first(raw, ("token_price", "tokenPrice", "price"))),
        )


@dataclass(frozen=True)
class OrderAck:
    """Venue acknowledgement of a submitted order."""
    order_id: str
    status: str

    @classmethod
    def from_payload(cls, raw: Any) -> Optional["OrderAck"]:
        if isinstance(raw, dict) and isinstance(raw.get("data"), dict):
            raw = raw["data"]
        if not isinstance(raw, dict):
            return None
        order_id = _first(raw, ("order_id", "orderId", "id"))
        if order_id is None:
            return None
        return cls(order_id=str(order_id), status=str(raw.get("status", "")))


@dataclass(frozen=True)
class LadderRung:
    """Single take profit level."""
    price_level: Decimal
    exit_fraction: Decimal


@dataclass(frozen=True)
class ExitPlan:
    """Immutable exit parameters computed once before the loop starts."""
    entry_price: Decimal
    volatility_pct: Decimal
    take_profit_pct: Decimal
    trail_pct: Decimal
    ladder: Tuple[LadderRung, ...]


@dataclass(frozen=True)
class ExitAction:
    """
    A decided (not yet executed) exit order.
    `rung` is the ladder index for partial take-profits, None otherwise.
    """
    kind: ExitKind
    fraction: Decimal
    limit_price: Decimal
    trigger_price: Decimal
    rung: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind.is_terminal
