"""Period-end financial reports: trial balance, GL detail, balance sheet, P&L, lots, realized P&L."""
from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.database import get_db
from fundledger.middleware.auth import ensure_fund_access, require_permission
from fundledger.routes.accounts import account_out
from fundledger.routes.funds import get_fund_or_404
from fundledger.services.ledger import LedgerService, month_start, quarter_start
from fundledger.services.lots import lot_summary, realized_pnl

router = APIRouter(prefix="/api/v1/reports", tags=["reports"])

TRIAL_PERIODS = ("mtd", "qtd", "custom")


def trial_window(
    period: str,
    as_of: date | None,
    date_from: date | None,
    date_to: date | None,
) -> tuple[date, date]:
    """Resolve an mtd/qtd/custom selector into an inclusive date window."""
    if period not in TRIAL_PERIODS:
        raise HTTPException(status_code=400, detail=f"period must be one of {', '.join(TRIAL_PERIODS)}")
    if period == "custom":
        if date_from is None or date_to is None:
            raise HTTPException(status_code=400, detail="date_from and date_to are required for a custom period")
        if date_from > date_to:
            raise HTTPException(status_code=400, detail="date_from must not be after date_to")
        return date_from, date_to

    end = as_of or date.today()
    start = month_start(end) if period == "mtd" else quarter_start(end)
    return start, end


# ---------------------------------------------------------------------------
# Trial balance
# ---------------------------------------------------------------------------

@router.get("/{fund_id}/gl-trial")
async def gl_trial(
    fund_id: uuid.UUID,
    period: str = Query("mtd"),
    as_of: date | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reports.financial.view")),
):
    """Opening, debit, credit and closing balance per GL account."""
    ensure_fund_access(user, fund_id)
    fund = await get_fund_or_404(db, fund_id)
    start, end = trial_window(period, as_of, date_from, date_to)

    data = await LedgerService(db).trial_balance(fund_id, start, end)
    return {"success": True, "data": {"fund_code": fund.code, "period": period, **data}}


# ---------------------------------------------------------------------------
# GL detail
# ---------------------------------------------------------------------------

@router.get("/{fund_id}/gl-report")
async def gl_report(
    fund_id: uuid.UUID,
    gl_code: str | None = Query(None),
    period: str = Query("mtd"),
    as_of: date | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reports.financial.view")),
):
    """Journal lines per GL account with Dr/Cr amounts and a running balance."""
    ensure_fund_access(user, fund_id)
    fund = await get_fund_or_404(db, fund_id)
    start, end = trial_window(period, as_of, date_from, date_to)

    data = await LedgerService(db).gl_report(fund_id, start, end, gl_code or None)
    if gl_code and not data["accounts"]:
        raise HTTPException(status_code=404, detail=f"GL account {gl_code} not found for fund")
    return {"success": True, "data": {"fund_code": fund.code, "period": period, **data}}


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@router.get("/{fund_id}/balance-sheet")
async def balance_sheet(
    fund_id: uuid.UUID,
    as_of: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reports.financial.view")),
):
    ensure_fund_access(user, fund_id)
    fund = await get_fund_or_404(db, fund_id)
    data = await LedgerService(db).balance_sheet(fund_id, as_of or date.today())
    return {"success": True, "data": {"fund_code": fund.code, **data}}


@router.get("/{fund_id}/profit-loss")
async def profit_loss(
    fund_id: uuid.UUID,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reports.financial.view")),
):
    """Revenue and expenses for a window; defaults to month-to-date."""
    ensure_fund_access(user, fund_id)
    fund = await get_fund_or_404(db, fund_id)
    end = date_to or date.today()
    start = date_from or month_start(end)
    if start > end:
        raise HTTPException(status_code=400, detail="date_from must not be after date_to")

    data = await LedgerService(db).profit_loss(fund_id, start, end)
    return {"success": True, "data": {"fund_code": fund.code, **data}}


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

@router.get("/{fund_id}/lot-summary")
async def lot_summary_report(
    fund_id: uuid.UUID,
    as_of: date | None = Query(None),
    symbol_id: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reports.financial.view")),
):
    """Open FIFO lots valued at the latest traded price of each symbol."""
    from fundledger.models.trade import Trade

    ensure_fund_access(user, fund_id)
    await get_fund_or_404(db, fund_id)

    stmt = select(Trade).where(Trade.fund_id == fund_id)
    if as_of:
        stmt = stmt.where(Trade.trade_date <= as_of)
    if symbol_id:
        stmt = stmt.where(Trade.symbol_id == symbol_id)
    result = await db.execute(stmt)

    return {"success": True, "data": lot_summary(result.scalars().all())}


@router.get("/{fund_id}/rpnl")
async def realized_pnl_report(
    fund_id: uuid.UUID,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    symbol_id: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reports.financial.view")),
):
    """Realized P&L per closed FIFO lot, split into long and short term."""
    from fundledger.models.trade import Trade

    ensure_fund_access(user, fund_id)
    await get_fund_or_404(db, fund_id)
    if date_from and date_to and date_from > date_to:
        raise HTTPException(status_code=400, detail="date_from must not be after date_to")

    # trades after date_to cannot close anything inside the window
    stmt = select(Trade).where(Trade.fund_id == fund_id)
    if date_to:
        stmt = stmt.where(Trade.trade_date <= date_to)
    if symbol_id:
        stmt = stmt.where(Trade.symbol_id == symbol_id)
    result = await db.execute(stmt)

    return {"success": True, "data": realized_pnl(result.scalars().all(), date_from, date_to)}


@router.get("/{fund_id}/chart-of-accounts")
async def chart_of_accounts(
    fund_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reports.financial.view")),
):
    ensure_fund_access(user, fund_id)
    await get_fund_or_404(db, fund_id)
    accounts = await LedgerService(db).accounts(fund_id, active_only=False)

    grouped: dict[str, list] = {}
    for account in accounts:
        grouped.setdefault(account.account_type, []).append(account_out(account))
    return {"success": True, "data": {"accounts": grouped, "count": len(accounts)}}
