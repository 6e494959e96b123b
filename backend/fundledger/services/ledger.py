"""Ledger aggregation: account movements, GL detail, trial balance, balance sheet, P&L."""
from __future__ import annotations

import datetime
import uuid
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.services.reconciliation import LedgerSummary, to_money

# Reversed originals stay in the ledger; their reversal entries offset them.
LEDGER_STATUSES = ("posted", "reversed")

ZERO = Decimal("0.00")


@dataclass
class AccountMovement:
    opening: Decimal = ZERO
    debits: Decimal = ZERO
    credits: Decimal = ZERO

    @property
    def closing(self) -> Decimal:
        return self.opening + self.debits - self.credits


def month_start(day: datetime.date) -> datetime.date:
    return day.replace(day=1)


def quarter_start(day: datetime.date) -> datetime.date:
    return datetime.date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)


def signed_balance(normal_balance: str, debit_minus_credit: Decimal) -> Decimal:
    """Express a debit-minus-credit amount on the account's normal side."""
    return debit_minus_credit if normal_balance == "debit" else -debit_minus_credit


class LedgerService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def accounts(self, fund_id: uuid.UUID, active_only: bool = True) -> list:
        from fundledger.models.gl import Account

        stmt = select(Account).where(Account.fund_id == fund_id)
        if active_only:
            stmt = stmt.where(Account.is_active == True)
        result = await self.db.execute(stmt.order_by(Account.gl_code))
        return list(result.scalars().all())

    async def movements(
        self,
        fund_id: uuid.UUID,
        start: datetime.date,
        end: datetime.date,
        account_ids: list[uuid.UUID] | None = None,
    ) -> dict[uuid.UUID, AccountMovement]:
        """Opening balance before ``start`` and debits/credits within [start, end], per account."""
        from fundledger.models.gl import JournalEntry, JournalLine

        def _base(*columns):
            stmt = (
                select(JournalLine.account_id, *columns)
                .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
                .where(
                    JournalEntry.fund_id == fund_id,
                    JournalEntry.status.in_(LEDGER_STATUSES),
                )
                .group_by(JournalLine.account_id)
            )
            if account_ids is not None:
                stmt = stmt.where(JournalLine.account_id.in_(account_ids))
            return stmt

        result: dict[uuid.UUID, AccountMovement] = {}

        opening_stmt = _base(
            func.coalesce(func.sum(JournalLine.debit_amount - JournalLine.credit_amount), 0).label("net"),
        ).where(JournalEntry.entry_date < start)
        for row in (await self.db.execute(opening_stmt)).all():
            result.setdefault(row.account_id, AccountMovement()).opening = to_money(row.net)

        period_stmt = _base(
            func.coalesce(func.sum(JournalLine.debit_amount), 0).label("debits"),
            func.coalesce(func.sum(JournalLine.credit_amount), 0).label("credits"),
        ).where(JournalEntry.entry_date >= start, JournalEntry.entry_date <= end)
        for row in (await self.db.execute(period_stmt)).all():
            movement = result.setdefault(row.account_id, AccountMovement())
            movement.debits = to_money(row.debits)
            movement.credits = to_money(row.credits)

        return result

    async def summary_for(
        self,
        account,
        start: datetime.date,
        end: datetime.date,
    ) -> LedgerSummary:
        movement = (await self.movements(account.fund_id, start, end, [account.id])).get(
            account.id, AccountMovement()
        )
        return LedgerSummary(
            gl_code=account.gl_code,
            opening_balance=movement.opening,
            total_debits=movement.debits,
            total_credits=movement.credits,
        )

    async def ledger_rows(self, account, start: datetime.date, end: datetime.date) -> list[dict]:
        """Journal lines hitting ``account`` in [start, end], oldest first, with a running balance."""
        from fundledger.models.gl import JournalEntry, JournalLine

        summary = await self.summary_for(account, start, end)
        stmt = (
            select(JournalEntry.entry_date, JournalEntry.memo, JournalEntry.id, JournalLine)
            .select_from(JournalLine)
            .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
            .where(
                JournalLine.account_id == account.id,
                JournalEntry.status.in_(LEDGER_STATUSES),
                JournalEntry.entry_date >= start,
                JournalEntry.entry_date <= end,
            )
            .order_by(JournalEntry.entry_date, JournalEntry.created_at, JournalLine.line_number)
        )
        running = summary.opening_balance
        rows = []
        for entry_date, memo, je_id, line in (await self.db.execute(stmt)).all():
            debit = to_money(line.debit_amount)
            credit = to_money(line.credit_amount)
            running = running + debit - credit
            rows.append({
                "journal_id": str(je_id),
                "date": str(entry_date),
                "description": line.memo or memo,
                "debit": float(debit),
                "credit": float(credit),
                "balance": float(running),
            })
        return rows

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def gl_report(
        self,
        fund_id: uuid.UUID,
        start: datetime.date,
        end: datetime.date,
        gl_code: str | None = None,
    ) -> dict:
        """Journal lines per account in [start, end] with Dr/Cr amounts and a running balance.

        Without ``gl_code`` only accounts with an opening balance or activity
        in the window are listed.
        """
        from fundledger.models.gl import JournalEntry, JournalLine

        accounts = await self.accounts(fund_id)
        if gl_code is not None:
            accounts = [a for a in accounts if a.gl_code == gl_code]
        account_ids = [a.id for a in accounts]
        movements = await self.movements(fund_id, start, end, account_ids)

        stmt = (
            select(JournalEntry.entry_date, JournalEntry.memo, JournalEntry.id, JournalLine)
            .select_from(JournalLine)
            .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
            .where(
                JournalEntry.fund_id == fund_id,
                JournalLine.account_id.in_(account_ids),
                JournalEntry.status.in_(LEDGER_STATUSES),
                JournalEntry.entry_date >= start,
                JournalEntry.entry_date <= end,
            )
            .order_by(JournalEntry.entry_date, JournalEntry.created_at, JournalLine.line_number)
        )
        lines = defaultdict(list)
        for entry_date, memo, je_id, line in (await self.db.execute(stmt)).all():
            lines[line.account_id].append((entry_date, memo, je_id, line))

        sections = []
        for account in accounts:
            movement = movements.get(account.id, AccountMovement())
            if gl_code is None and not lines[account.id] and movement.opening == 0:
                continue
            running = movement.opening
            rows = []
            for entry_date, memo, je_id, line in lines[account.id]:
                debit = to_money(line.debit_amount)
                credit = to_money(line.credit_amount)
                running = running + debit - credit
                rows.append({
                    "date": str(entry_date),
                    "journalid": str(je_id),
                    "accountname": account.gl_name,
                    "description": line.memo or memo,
                    "dramount": float(debit),
                    "cramount": float(credit),
                    "runningbalance": float(running),
                })
            sections.append({
                "glNumber": account.gl_code,
                "glName": account.gl_name,
                "openingbalance": float(movement.opening),
                "closingbalance": float(movement.closing),
                "rows": rows,
            })

        return {"date_from": str(start), "date_to": str(end), "accounts": sections}

    async def trial_balance(
        self,
        fund_id: uuid.UUID,
        start: datetime.date,
        end: datetime.date,
    ) -> dict:
        accounts = await self.accounts(fund_id)
        movements = await self.movements(fund_id, start, end)

        rows = []
        totals = AccountMovement()
        for account in accounts:
            movement = movements.get(account.id, AccountMovement())
            rows.append({
                "category": account.category,
                "type": account.account_type,
                "glNumber": account.gl_code,
                "glName": account.gl_name,
                "openingbalance": float(movement.opening),
                "debit": float(movement.debits),
                "credit": float(movement.credits),
                "closingbalance": float(movement.closing),
            })
            totals.opening += movement.opening
            totals.debits += movement.debits
            totals.credits += movement.credits

        return {
            "date_from": str(start),
            "date_to": str(end),
            "rows": rows,
            "totals": {
                "openingbalance": float(totals.opening),
                "debit": float(totals.debits),
                "credit": float(totals.credits),
                "closingbalance": float(totals.closing),
            },
            "is_balanced": totals.debits == totals.credits,
        }

    async def balance_sheet(self, fund_id: uuid.UUID, as_of: datetime.date) -> dict:
        accounts = await self.accounts(fund_id)
        # Opening of the day after as_of == cumulative balance through as_of
        movements = await self.movements(fund_id, as_of + datetime.timedelta(days=1), as_of)

        sections: dict[str, list] = {"asset": [], "liability": [], "equity": []}
        totals = {key: ZERO for key in sections}
        net_income = ZERO

        for account in accounts:
            net = movements.get(account.id, AccountMovement()).opening
            if account.account_type in sections:
                amount = signed_balance(account.normal_balance, net)
                sections[account.account_type].append({
                    "gl_code": account.gl_code,
                    "gl_name": account.gl_name,
                    "amount": float(amount),
                })
                totals[account.account_type] += amount
            else:
                # revenue and expense roll into retained earnings
                net_income -= net

        total_equity = totals["equity"] + net_income
        return {
            "title": "Balance Sheet",
            "as_of": str(as_of),
            "assets": {"items": sections["asset"], "total": float(totals["asset"])},
            "liabilities": {"items": sections["liability"], "total": float(totals["liability"])},
            "equity": {
                "items": sections["equity"],
                "retained_earnings": float(net_income),
                "total": float(total_equity),
            },
            "total_liabilities_and_equity": float(totals["liability"] + total_equity),
            "is_balanced": totals["asset"] == totals["liability"] + total_equity,
        }

    async def profit_loss(
        self,
        fund_id: uuid.UUID,
        start: datetime.date,
        end: datetime.date,
    ) -> dict:
        accounts = await self.accounts(fund_id)
        movements = await self.movements(fund_id, start, end)

        revenue, expenses = [], []
        total_revenue = total_expenses = ZERO
        for account in accounts:
            if account.account_type not in ("revenue", "expense"):
                continue
            movement = movements.get(account.id, AccountMovement())
            amount = signed_balance(account.normal_balance, movement.debits - movement.credits)
            item = {"gl_code": account.gl_code, "gl_name": account.gl_name, "amount": float(amount)}
            if account.account_type == "revenue":
                revenue.append(item)
                total_revenue += amount
            else:
                expenses.append(item)
                total_expenses += amount

        return {
            "title": "Profit & Loss",
            "date_from": str(start),
            "date_to": str(end),
            "revenue": {"items": revenue, "total": float(total_revenue)},
            "expenses": {"items": expenses, "total": float(total_expenses)},
            "net_income": float(total_revenue - total_expenses),
        }
