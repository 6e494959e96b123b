"""Newest-first continuity rule for deleting trades.

A set of trades may be removed from a (fund, symbol) trade history only if it
is exactly the newest ``k`` trades of that history, ordered by
``(trade_date DESC, created_at DESC, trade_id DESC)``.  Deleting anything else
would leave positions and lots computed from a history with a hole in it.
"""
from __future__ import annotations

import dataclasses
import datetime
from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

BULK_DELETE_HINT = "Bulk delete must be continuous from latest trade."


class TradeLike(Protocol):
    trade_id: str
    fund_id: Any
    symbol_id: str
    trade_date: datetime.date
    created_at: datetime.datetime | None


@dataclasses.dataclass(frozen=True)
class ContinuityResult:
    ok: bool
    reason: str | None = None


@dataclasses.dataclass(frozen=True)
class ContinuityIssue:
    """One failing (fund, symbol) group of a bulk delete request."""
    fund_id: str
    symbol_id: str
    message: str
    total_trades: int
    selected: int
    hint: str = BULK_DELETE_HINT

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


class NonContiguousSelectionError(ValueError):
    """Raised when at least one (fund, symbol) group fails the continuity check."""

    def __init__(self, issues: list[ContinuityIssue]) -> None:
        self.issues = issues
        super().__init__(
            "Cannot bulk delete. Some symbols have non-contiguous or incomplete selection."
        )


def trade_sort_key(trade: TradeLike) -> tuple:
    """Ascending key; sort with ``reverse=True`` for newest first."""
    created_at = trade.created_at or datetime.datetime.min
    if created_at.tzinfo is not None:
        created_at = created_at.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return (trade.trade_date, created_at, str(trade.trade_id))


def sort_newest_first(trades: Iterable[TradeLike]) -> list[TradeLike]:
    return sorted(trades, key=trade_sort_key, reverse=True)


def validate_continuous_deletion(
    all_trades_desc: Sequence[TradeLike],
    selected_desc: Sequence[TradeLike],
) -> ContinuityResult:
    """Check that ``selected_desc`` is an unbroken newest-first prefix of ``all_trades_desc``.

    Both sequences must already be sorted newest first.
    """
    if not selected_desc:
        return ContinuityResult(False, "No trades selected")

    if len(selected_desc) > len(all_trades_desc):
        return ContinuityResult(
            False,
            f"Selection has {len(selected_desc)} trades but the symbol only has "
            f"{len(all_trades_desc)}.",
        )

    if all_trades_desc[0].trade_id != selected_desc[0].trade_id:
        return ContinuityResult(
            False,
            "Latest trade is not selected. Bulk delete must start from the most recent trade.",
        )

    for i, trade in enumerate(selected_desc):
        if trade.trade_id != all_trades_desc[i].trade_id:
            previous = selected_desc[i - 1].trade_id if i > 0 else "start"
            return ContinuityResult(
                False,
                f"Missing trade between {previous} and {trade.trade_id}. "
                f"Selection must be continuous.",
            )

    return ContinuityResult(True)


def group_by_fund_symbol(trades: Iterable[TradeLike]) -> dict[tuple[str, str], list[TradeLike]]:
    groups: dict[tuple[str, str], list[TradeLike]] = defaultdict(list)
    for trade in trades:
        groups[(str(trade.fund_id), trade.symbol_id)].append(trade)
    return dict(groups)


def validate_bulk_selection(
    selected: Iterable[TradeLike],
    history_for: Any,
) -> list[ContinuityIssue]:
    """Validate every (fund, symbol) group of a selection.

    ``history_for(fund_id, symbol_id)`` returns the full trade history of the
    group in any order.  Returns one issue per failing group; an empty list
    means the whole batch may be deleted.
    """
    issues: list[ContinuityIssue] = []
    for (fund_id, symbol_id), group in group_by_fund_symbol(selected).items():
        history = sort_newest_first(history_for(fund_id, symbol_id))
        selected_desc = sort_newest_first(group)
        check = validate_continuous_deletion(history, selected_desc)
        if not check.ok:
            issues.append(ContinuityIssue(
                fund_id=fund_id,
                symbol_id=symbol_id,
                message=check.reason or "",
                total_trades=len(history),
                selected=len(selected_desc),
            ))
    return issues
