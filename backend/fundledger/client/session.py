"""Client-side page state for reconciliation and trade deletion.

Local state only changes after the server confirms.  Failed fetches leave a
``banner`` message and an empty/zero state behind; nothing here is fatal.
"""
from __future__ import annotations

import dataclasses
import datetime
import logging
from decimal import Decimal
from typing import Any

from fundledger.client.api import ApiError, FundLedgerClient
from fundledger.services.continuity import (
    ContinuityIssue,
    NonContiguousSelectionError,
    sort_newest_first,
    validate_bulk_selection,
)
from fundledger.services.reconciliation import (
    ReconciliationPreview,
    ReconciliationStatus,
    ReconciliationWorkflow,
    is_all_reconciled,
    require_fields,
    to_money,
)

logger = logging.getLogger(__name__)

EMPTY_SUMMARY = {
    "opening_balance": 0.0,
    "total_debits": 0.0,
    "total_credits": 0.0,
    "closing_balance": 0.0,
    "rows": [],
}


class ReconciliationSession:
    """Reconciliation page for one fund and one (pricing_date, pricing_month) period."""

    def __init__(self, client: FundLedgerClient, pricing_date: datetime.date | str, pricing_month: str) -> None:
        require_fields(pricing_date=pricing_date, pricing_month=pricing_month)
        self.client = client
        self.pricing_date = pricing_date
        self.pricing_month = pricing_month
        self.rows: list[dict] = []
        self.workflows: dict[str, ReconciliationWorkflow] = {}
        self.banner: str | None = None

    @property
    def all_reconciled(self) -> bool:
        return is_all_reconciled(w.status.value for w in self.workflows.values())

    def status_of(self, gl_code: str) -> ReconciliationStatus:
        return self._workflow(gl_code).status

    def _workflow(self, gl_code: str) -> ReconciliationWorkflow:
        require_fields(gl_code=gl_code)
        if gl_code not in self.workflows:
            self.workflows[gl_code] = ReconciliationWorkflow(gl_code)
        return self.workflows[gl_code]

    def _fail(self, exc: ApiError) -> None:
        self.banner = exc.message
        logger.warning(f"Reconciliation request failed: {exc.message}")

    async def load(self) -> list[dict]:
        """Fetch bank/broker accounts of the period with their persisted status."""
        self.banner = None
        try:
            data = await self.client.bank_gl(self.pricing_date, self.pricing_month)
        except ApiError as e:
            self._fail(e)
            self.rows = []
            self.workflows = {}
            return self.rows

        self.rows = data["rows"]
        self.workflows = {
            row["gl_code"]: ReconciliationWorkflow(row["gl_code"], ReconciliationStatus(row["status"]))
            for row in self.rows
        }
        return self.rows

    async def summary(self, gl_code: str) -> dict:
        require_fields(gl_code=gl_code)
        try:
            return await self.client.period_summary(gl_code, self.pricing_date, self.pricing_month)
        except ApiError as e:
            self._fail(e)
            return {"gl_code": gl_code, **EMPTY_SUMMARY}

    async def initiate(self, gl_code: str, statement_balance: Any) -> ReconciliationPreview | None:
        """Enter a statement balance; moves the account to pending once the server returns its preview."""
        workflow = self._workflow(gl_code)
        require_fields(statement_balance=statement_balance)
        amount = to_money(statement_balance)
        workflow.check_initiate()
        try:
            data = await self.client.initiate(gl_code, self.pricing_date, self.pricing_month, amount)
        except ApiError as e:
            self._fail(e)
            return None

        preview = ReconciliationPreview(
            gl_code=data["gl_code"],
            closing_balance=to_money(data["closing_balance"]),
            statement_balance=to_money(data["statement_balance"]),
        )
        self.banner = None
        return workflow.begin(preview)

    def cancel(self, gl_code: str) -> None:
        self._workflow(gl_code).cancel()

    async def reconcile(self, gl_code: str) -> bool:
        """Confirm a pending account.  Raises locally when the difference is not zero."""
        workflow = self._workflow(gl_code)
        preview = workflow.check_reconcile()
        try:
            await self.client.reconcile(
                gl_code, self.pricing_date, self.pricing_month, preview.statement_balance,
            )
        except ApiError as e:
            self._fail(e)
            return False
        workflow.reconcile()
        self.banner = None
        return True

    async def reopen(self, gl_code: str) -> bool:
        workflow = self._workflow(gl_code)
        workflow.check_reopen(self.all_reconciled)
        try:
            await self.client.reopen(gl_code, self.pricing_date, self.pricing_month)
        except ApiError as e:
            self._fail(e)
            return False
        workflow.reopen(True)
        self.banner = None
        return True


@dataclasses.dataclass
class TradeRow:
    trade_id: str
    fund_id: str
    symbol_id: str
    trade_date: datetime.date
    created_at: datetime.datetime | None
    side: str = ""
    quantity: Decimal = Decimal("0")
    price: Decimal = Decimal("0")

    @classmethod
    def from_dict(cls, data: dict) -> TradeRow:
        created_at = data.get("created_at")
        return cls(
            trade_id=data["trade_id"],
            fund_id=str(data["fund_id"]),
            symbol_id=data["symbol_id"],
            trade_date=datetime.date.fromisoformat(data["trade_date"]),
            created_at=datetime.datetime.fromisoformat(created_at) if created_at else None,
            side=data.get("side", ""),
            quantity=Decimal(str(data.get("quantity", 0))),
            price=Decimal(str(data.get("price", 0))),
        )


class TradeBlotter:
    """Loaded trades of a fund with a local newest-first check before deleting."""

    def __init__(self, client: FundLedgerClient) -> None:
        self.client = client
        self.trades: list[TradeRow] = []
        self.banner: str | None = None

    async def load(self, symbol_id: str | None = None) -> list[TradeRow]:
        self.banner = None
        try:
            data = await self.client.list_trades(symbol_id=symbol_id)
        except ApiError as e:
            self.banner = e.message
            self.trades = []
            return self.trades
        self.trades = sort_newest_first(TradeRow.from_dict(t) for t in data)
        return self.trades

    def check(self, trade_ids: list[str]) -> list[ContinuityIssue]:
        by_id = {t.trade_id: t for t in self.trades}
        selected = [by_id[i] for i in dict.fromkeys(trade_ids) if i in by_id]
        if not selected:
            return [ContinuityIssue(
                fund_id=str(self.client.context.fund_id or ""),
                symbol_id="",
                message="No trades selected",
                total_trades=len(self.trades),
                selected=0,
            )]
        return validate_bulk_selection(
            selected,
            lambda fund_id, symbol_id: [
                t for t in self.trades if t.fund_id == fund_id and t.symbol_id == symbol_id
            ],
        )

    async def delete(self, trade_ids: list[str]) -> dict | None:
        """Delete trades after the local continuity check passes.

        Raises :class:`NonContiguousSelectionError` before any request when the
        selection is not a newest-first prefix of each symbol's history.
        """
        issues = self.check(trade_ids)
        if issues:
            raise NonContiguousSelectionError(issues)

        try:
            if len(trade_ids) == 1:
                payload = await self.client.delete_trade(trade_ids[0])
            else:
                payload = await self.client.delete_trades(trade_ids)
        except ApiError as e:
            self.banner = e.message
            return None

        deleted = set(payload["data"]["deleted"])
        self.trades = [t for t in self.trades if t.trade_id not in deleted]
        self.banner = None
        return payload["data"]
