"""Database-backed reconciliation: period windows, statuses, reconcile and reopen."""
from __future__ import annotations

import datetime
import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.services.ledger import AccountMovement, LedgerService, month_start
from fundledger.services.reconciliation import (
    InvalidTransitionError,
    ReconciliationError,
    ReconciliationPreview,
    ReconciliationStatus,
    compute_preview,
    ensure_can_reconcile,
    ensure_can_reopen,
    is_all_reconciled,
    require_fields,
)

logger = logging.getLogger(__name__)


class AccountNotFoundError(LookupError):
    pass


class ReconciliationService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def period_window(
        self,
        fund_id: uuid.UUID,
        pricing_date: datetime.date,
        pricing_month: str,
    ) -> tuple[datetime.date, datetime.date]:
        """Start/end of the reporting period; falls back to the calendar month."""
        from fundledger.models.period import ReportingPeriod

        result = await self.db.execute(
            select(ReportingPeriod).where(
                ReportingPeriod.fund_id == fund_id,
                ReportingPeriod.end_date == pricing_date,
                ReportingPeriod.period_name == pricing_month,
            )
        )
        period = result.scalar_one_or_none()
        if period is not None:
            return period.start_date, period.end_date
        return month_start(pricing_date), pricing_date

    async def reconcilable_accounts(self, fund_id: uuid.UUID) -> list:
        return [a for a in await self.ledger.accounts(fund_id) if a.is_reconcilable]

    async def get_account(self, fund_id: uuid.UUID, gl_code: str):
        from fundledger.models.gl import Account

        result = await self.db.execute(
            select(Account).where(Account.fund_id == fund_id, Account.gl_code == gl_code)
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(f"GL account {gl_code} not found for fund")
        if not account.is_reconcilable:
            raise ReconciliationError(f"GL account {gl_code} is not a bank or broker account")
        return account

    async def records(
        self,
        fund_id: uuid.UUID,
        pricing_date: datetime.date,
        pricing_month: str,
    ) -> dict[str, Any]:
        """All reconciliation records of a period keyed by GL code, in one query."""
        from fundledger.models.reconciliation import ReconciliationRecord

        result = await self.db.execute(
            select(ReconciliationRecord).where(
                ReconciliationRecord.fund_id == fund_id,
                ReconciliationRecord.pricing_date == pricing_date,
                ReconciliationRecord.pricing_month == pricing_month,
            )
        )
        return {r.gl_code: r for r in result.scalars().all()}

    async def _get_or_create_record(
        self,
        fund_id: uuid.UUID,
        gl_code: str,
        pricing_date: datetime.date,
        pricing_month: str,
    ):
        from fundledger.models.reconciliation import ReconciliationRecord

        record = (await self.records(fund_id, pricing_date, pricing_month)).get(gl_code)
        if record is None:
            record = ReconciliationRecord(
                fund_id=fund_id,
                gl_code=gl_code,
                pricing_date=pricing_date,
                pricing_month=pricing_month,
                status=ReconciliationStatus.OPEN.value,
            )
            self.db.add(record)
        return record

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def status(
        self,
        fund_id: uuid.UUID,
        pricing_date: datetime.date,
        pricing_month: str,
    ) -> dict:
        """Every reconcilable account's status for a period plus the derived flag."""
        require_fields(pricing_date=pricing_date, pricing_month=pricing_month)
        accounts = await self.reconcilable_accounts(fund_id)
        records = await self.records(fund_id, pricing_date, pricing_month)

        items = []
        for account in accounts:
            record = records.get(account.gl_code)
            items.append({
                "gl_code": account.gl_code,
                "status": record.status if record else ReconciliationStatus.OPEN.value,
            })
        return {
            "pricing_date": str(pricing_date),
            "pricing_month": pricing_month,
            "items": items,
            "all_reconciled": is_all_reconciled(i["status"] for i in items),
        }

    async def bank_gl(
        self,
        fund_id: uuid.UUID,
        pricing_date: datetime.date,
        pricing_month: str,
    ) -> dict:
        """Bank/broker accounts with their period closing balance and status."""
        require_fields(pricing_date=pricing_date, pricing_month=pricing_month)
        start, end = await self.period_window(fund_id, pricing_date, pricing_month)
        accounts = await self.reconcilable_accounts(fund_id)
        movements = await self.ledger.movements(fund_id, start, end, [a.id for a in accounts])
        records = await self.records(fund_id, pricing_date, pricing_month)

        rows = []
        for account in accounts:
            movement = movements.get(account.id, AccountMovement())
            record = records.get(account.gl_code)
            rows.append({
                "gl_code": account.gl_code,
                "gl_name": account.gl_name,
                "category": account.category,
                "opening_balance": float(movement.opening),
                "closing_balance": float(movement.closing),
                "statement_balance": (
                    float(record.statement_balance)
                    if record and record.statement_balance is not None else None
                ),
                "status": record.status if record else ReconciliationStatus.OPEN.value,
            })
        return {
            "period_start": str(start),
            "period_end": str(end),
            "rows": rows,
            "all_reconciled": is_all_reconciled(r["status"] for r in rows),
        }

    async def period_summary(
        self,
        fund_id: uuid.UUID,
        gl_code: str,
        pricing_date: datetime.date,
        pricing_month: str,
    ) -> dict:
        require_fields(gl_code=gl_code, pricing_date=pricing_date, pricing_month=pricing_month)
        account = await self.get_account(fund_id, gl_code)
        start, end = await self.period_window(fund_id, pricing_date, pricing_month)
        summary = await self.ledger.summary_for(account, start, end)
        return {
            "gl_code": account.gl_code,
            "gl_name": account.gl_name,
            "period_start": str(start),
            "period_end": str(end),
            "opening_balance": float(summary.opening_balance),
            "total_debits": float(summary.total_debits),
            "total_credits": float(summary.total_credits),
            "closing_balance": float(summary.closing_balance),
            "rows": await self.ledger.ledger_rows(account, start, end),
        }

    async def period_flags(self, fund_id: uuid.UUID, periods: list) -> dict[tuple, bool]:
        """``all_reconciled`` for many reporting periods with two queries in total."""
        from fundledger.models.reconciliation import ReconciliationRecord

        gl_codes = [a.gl_code for a in await self.reconcilable_accounts(fund_id)]
        end_dates = {p.end_date for p in periods}
        statuses: dict[tuple, dict[str, str]] = {}
        if end_dates:
            result = await self.db.execute(
                select(ReconciliationRecord).where(
                    ReconciliationRecord.fund_id == fund_id,
                    ReconciliationRecord.pricing_date.in_(sorted(end_dates)),
                )
            )
            for r in result.scalars().all():
                statuses.setdefault((r.pricing_date, r.pricing_month), {})[r.gl_code] = r.status

        flags = {}
        for p in periods:
            period_statuses = statuses.get((p.end_date, p.period_name), {})
            flags[(p.end_date, p.period_name)] = is_all_reconciled(
                period_statuses.get(code, ReconciliationStatus.OPEN.value) for code in gl_codes
            )
        return flags

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _preview(
        self,
        account,
        pricing_date: datetime.date,
        pricing_month: str,
        statement_balance: Any,
    ) -> ReconciliationPreview:
        start, end = await self.period_window(account.fund_id, pricing_date, pricing_month)
        summary = await self.ledger.summary_for(account, start, end)
        return compute_preview(summary, statement_balance)

    async def initiate(
        self,
        fund_id: uuid.UUID,
        gl_code: str,
        pricing_date: datetime.date,
        pricing_month: str,
        statement_balance: Any,
    ) -> tuple[ReconciliationPreview, Any]:
        """Compute closing balance and difference; creates the record on first use."""
        require_fields(
            gl_code=gl_code, pricing_date=pricing_date,
            pricing_month=pricing_month, statement_balance=statement_balance,
        )
        account = await self.get_account(fund_id, gl_code)
        record = await self._get_or_create_record(fund_id, gl_code, pricing_date, pricing_month)
        if record.status == ReconciliationStatus.RECONCILED.value:
            raise InvalidTransitionError(f"GL account {gl_code} is already reconciled for this period")

        preview = await self._preview(account, pricing_date, pricing_month, statement_balance)
        record.closing_balance = preview.closing_balance
        record.difference = preview.difference
        await self.db.flush()
        return preview, record

    async def reconcile(
        self,
        fund_id: uuid.UUID,
        gl_code: str,
        pricing_date: datetime.date,
        pricing_month: str,
        statement_balance: Any,
        user_id: uuid.UUID | None,
    ) -> tuple[ReconciliationPreview, Any]:
        """Mark the account reconciled; the closing balance is recomputed from the ledger."""
        require_fields(
            gl_code=gl_code, pricing_date=pricing_date,
            pricing_month=pricing_month, statement_balance=statement_balance,
        )
        account = await self.get_account(fund_id, gl_code)
        record = await self._get_or_create_record(fund_id, gl_code, pricing_date, pricing_month)
        if record.status == ReconciliationStatus.RECONCILED.value:
            raise InvalidTransitionError(f"GL account {gl_code} is already reconciled for this period")

        preview = await self._preview(account, pricing_date, pricing_month, statement_balance)
        ensure_can_reconcile(preview)

        record.status = ReconciliationStatus.RECONCILED.value
        record.statement_balance = preview.statement_balance
        record.closing_balance = preview.closing_balance
        record.difference = preview.difference
        record.reconciled_by = user_id
        record.reconciled_at = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
        await self.db.flush()
        logger.info(f"Reconciled {gl_code} for fund {fund_id} period {pricing_month} {pricing_date}")
        return preview, record

    async def reopen(
        self,
        fund_id: uuid.UUID,
        gl_code: str,
        pricing_date: datetime.date,
        pricing_month: str,
    ):
        require_fields(gl_code=gl_code, pricing_date=pricing_date, pricing_month=pricing_month)
        await self.get_account(fund_id, gl_code)
        period = await self.status(fund_id, pricing_date, pricing_month)
        record = (await self.records(fund_id, pricing_date, pricing_month)).get(gl_code)
        current = record.status if record else ReconciliationStatus.OPEN.value

        ensure_can_reopen(current, period["all_reconciled"])

        record.status = ReconciliationStatus.OPEN.value
        record.reconciled_by = None
        record.reconciled_at = None
        await self.db.flush()
        logger.info(f"Reopened {gl_code} for fund {fund_id} period {pricing_month} {pricing_date}")
        return record
