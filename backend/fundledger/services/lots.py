"""FIFO tax lots built from a fund's trade history: open lots and realized P&L."""
from __future__ import annotations

import datetime
import logging
from collections import defaultdict, deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from fundledger.services.continuity import trade_sort_key
from fundledger.services.reconciliation import to_money

logger = logging.getLogger(__name__)

# Held longer than this is long term.
LONG_TERM_DAYS = 365


@dataclass
class Lot:
    symbol: str
    lot_id: str
    balance_qty: Decimal
    cost_per_unit: Decimal
    open_date: datetime.date | None = None

    def to_row(self, market_price: Decimal) -> dict:
        amount = to_money(self.balance_qty * self.cost_per_unit)
        market_value = to_money(self.balance_qty * market_price)
        return {
            "symbol": self.symbol,
            "lotId": self.lot_id,
            "openDate": str(self.open_date) if self.open_date else None,
            "balanceQty": float(self.balance_qty),
            "costPerUnit": float(self.cost_per_unit),
            "amount": float(amount),
            "marketPrice": float(market_price),
            "marketValue": float(market_value),
            "upnl": float(market_value - amount),
        }


@dataclass(frozen=True)
class ClosedLot:
    """The part of an open lot consumed by one sell."""
    symbol: str
    trade_id: str
    lot_id: str
    open_date: datetime.date
    open_price: Decimal
    close_date: datetime.date
    close_price: Decimal
    quantity: Decimal

    @property
    def is_long_term(self) -> bool:
        return (self.close_date - self.open_date).days > LONG_TERM_DAYS

    @property
    def rpnl(self) -> Decimal:
        return to_money(self.quantity * (self.close_price - self.open_price))

    def to_row(self) -> dict:
        rpnl = self.rpnl
        return {
            "symbol": self.symbol,
            "tradeId": self.trade_id,
            "lotId": self.lot_id,
            "openDate": str(self.open_date),
            "openPrice": float(self.open_price),
            "closeDate": str(self.close_date),
            "closePrice": float(self.close_price),
            "quantity": float(self.quantity),
            "longTermRpnl": float(rpnl) if self.is_long_term else 0.0,
            "shortTermRpnl": 0.0 if self.is_long_term else float(rpnl),
            "totalRpnl": float(rpnl),
        }


@dataclass
class LotReplay:
    open_lots: list[Lot] = field(default_factory=list)
    last_price: dict[str, Decimal] = field(default_factory=dict)
    closed: list[ClosedLot] = field(default_factory=list)


def replay_trades(trades: Iterable) -> LotReplay:
    """Replay trades oldest-first: buys open lots, sells close the oldest lots first."""
    open_lots: dict[str, deque[Lot]] = defaultdict(deque)
    replay = LotReplay()

    for trade in sorted(trades, key=trade_sort_key):
        qty = Decimal(str(trade.quantity))
        price = Decimal(str(trade.price))
        replay.last_price[trade.symbol_id] = price

        if trade.side == "buy":
            open_lots[trade.symbol_id].append(
                Lot(trade.symbol_id, trade.trade_id, qty, price, trade.trade_date)
            )
            continue

        lots = open_lots[trade.symbol_id]
        remaining = qty
        while remaining > 0 and lots:
            lot = lots[0]
            used = min(lot.balance_qty, remaining)
            replay.closed.append(ClosedLot(
                symbol=trade.symbol_id,
                trade_id=trade.trade_id,
                lot_id=lot.lot_id,
                open_date=lot.open_date,
                open_price=lot.cost_per_unit,
                close_date=trade.trade_date,
                close_price=price,
                quantity=used,
            ))
            lot.balance_qty -= used
            remaining -= used
            if lot.balance_qty == 0:
                lots.popleft()
        if remaining > 0:
            logger.warning(
                f"Sell {trade.trade_id} exceeds open quantity of {trade.symbol_id} by {remaining}"
            )

    replay.open_lots = [lot for symbol in sorted(open_lots) for lot in open_lots[symbol]]
    return replay


def build_lots(trades: Iterable) -> tuple[list[Lot], dict[str, Decimal]]:
    """Open lots and the last traded price per symbol."""
    replay = replay_trades(trades)
    return replay.open_lots, replay.last_price


def lot_summary(trades: Iterable) -> dict:
    lots, last_price = build_lots(trades)
    rows = [lot.to_row(last_price[lot.symbol]) for lot in lots]
    return {
        "rows": rows,
        "totals": {
            "amount": sum(r["amount"] for r in rows),
            "marketValue": sum(r["marketValue"] for r in rows),
            "upnl": sum(r["upnl"] for r in rows),
        },
    }


def realized_pnl(
    trades: Iterable,
    date_from: datetime.date | None = None,
    date_to: datetime.date | None = None,
) -> dict:
    """Closed-lot rows whose close date falls in [date_from, date_to].

    The full history is replayed so lots opened before the window are matched.
    """
    closed = [
        c for c in replay_trades(trades).closed
        if (date_from is None or c.close_date >= date_from)
        and (date_to is None or c.close_date <= date_to)
    ]
    rows = [c.to_row() for c in closed]
    long_term = sum((c.rpnl for c in closed if c.is_long_term), Decimal("0.00"))
    short_term = sum((c.rpnl for c in closed if not c.is_long_term), Decimal("0.00"))
    return {
        "rows": rows,
        "totals": {
            "longTermRpnl": float(long_term),
            "shortTermRpnl": float(short_term),
            "totalRpnl": float(long_term + short_term),
        },
    }
