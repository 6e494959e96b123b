"""Reconciliation of bank/broker GL accounts against external statements."""
from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from fundledger.database import get_db
from fundledger.middleware.auth import ensure_fund_access, require_permission, write_audit_log
from fundledger.services.reconciliation import (
    BalanceMismatchError,
    InvalidTransitionError,
    ReconciliationError,
    ReopenNotAllowedError,
)
from fundledger.services.reconciliation_service import AccountNotFoundError, ReconciliationService

router = APIRouter(prefix="/api/v1/reconciliation", tags=["reconciliation"])

CONFLICT_DETAIL = "Reconciliation was changed by another user; reload and retry"


class ReconciliationTarget(BaseModel):
    fund_id: uuid.UUID
    gl_code: str | None = None
    pricing_date: date | None = None
    pricing_month: str | None = None


class StatementBalanceIn(ReconciliationTarget):
    statement_balance: Decimal | None = None


def _to_http(exc: Exception) -> HTTPException:
    if isinstance(exc, AccountNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, BalanceMismatchError):
        return HTTPException(
            status_code=422,
            detail={"message": str(exc), "difference": float(exc.difference)},
        )
    if isinstance(exc, (ReopenNotAllowedError, InvalidTransitionError)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=422, detail=str(exc))


def _record_out(record) -> dict:
    return {
        "gl_code": record.gl_code,
        "pricing_date": str(record.pricing_date),
        "pricing_month": record.pricing_month,
        "status": record.status,
        "statement_balance": (
            float(record.statement_balance) if record.statement_balance is not None else None
        ),
        "closing_balance": float(record.closing_balance) if record.closing_balance is not None else None,
        "difference": float(record.difference) if record.difference is not None else None,
        "reconciled_at": record.reconciled_at.isoformat() if record.reconciled_at else None,
    }


async def _commit_or_conflict(db: AsyncSession) -> None:
    try:
        await db.commit()
    except (StaleDataError, IntegrityError):
        await db.rollback()
        raise HTTPException(
            status_code=409,
            detail=CONFLICT_DETAIL,
        )


# ---------------------------------------------------------------------------
# READ SIDE
# ---------------------------------------------------------------------------


@router.get("/{fund_id}/bank-gl")
async def bank_gl(
    fund_id: uuid.UUID,
    pricing_date: date = Query(..., alias="date"),
    pricing_month: str = Query(..., alias="month"),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reconciliation.view")),
):
    """Bank and broker accounts with period closing balances and status."""
    ensure_fund_access(user, fund_id)
    try:
        data = await ReconciliationService(db).bank_gl(fund_id, pricing_date, pricing_month)
    except ReconciliationError as e:
        raise _to_http(e)
    return {"success": True, "data": data}


@router.get("/{fund_id}/period-summary")
async def period_summary(
    fund_id: uuid.UUID,
    gl_code: str | None = Query(None),
    pricing_date: date = Query(..., alias="date"),
    pricing_month: str = Query(..., alias="month"),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reconciliation.view")),
):
    """Opening, debits, credits, closing and ledger rows of one account for the period."""
    ensure_fund_access(user, fund_id)
    try:
        data = await ReconciliationService(db).period_summary(
            fund_id, gl_code, pricing_date, pricing_month
        )
    except (ReconciliationError, AccountNotFoundError) as e:
        raise _to_http(e)
    return {"success": True, "data": data}


@router.get("/{fund_id}/status")
async def reconciliation_status(
    fund_id: uuid.UUID,
    pricing_date: date = Query(..., alias="date"),
    pricing_month: str = Query(..., alias="month"),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reconciliation.view")),
):
    """Status of every reconcilable account of the period in one call."""
    ensure_fund_access(user, fund_id)
    try:
        data = await ReconciliationService(db).status(fund_id, pricing_date, pricing_month)
    except ReconciliationError as e:
        raise _to_http(e)
    return {"success": True, "data": data}


# ---------------------------------------------------------------------------
# TRANSITIONS
# ---------------------------------------------------------------------------


@router.post("/reconciliation/initiate")
async def initiate(
    body: StatementBalanceIn,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reconciliation.reconcile")),
):
    """Compute closing balance and difference against a candidate statement balance."""
    ensure_fund_access(user, body.fund_id)
    try:
        preview, _record = await ReconciliationService(db).initiate(
            body.fund_id, body.gl_code, body.pricing_date, body.pricing_month, body.statement_balance,
        )
    except (ReconciliationError, AccountNotFoundError) as e:
        raise _to_http(e)
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail=CONFLICT_DETAIL)

    await write_audit_log(
        db, user, "reconciliation.account.initiate", "reconciliation", body.gl_code,
        {"fund_id": str(body.fund_id), "pricing_date": str(body.pricing_date), **preview.to_dict()},
    )
    await _commit_or_conflict(db)
    return {"success": True, "data": preview.to_dict()}


@router.post("/reconciliation/reconcile")
async def reconcile(
    body: StatementBalanceIn,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reconciliation.reconcile")),
):
    """Mark an account reconciled; rejected unless the difference is exactly zero."""
    ensure_fund_access(user, body.fund_id)
    user_id = user["user_id"]
    if not isinstance(user_id, uuid.UUID):
        user_id = uuid.UUID(str(user_id))

    try:
        preview, record = await ReconciliationService(db).reconcile(
            body.fund_id, body.gl_code, body.pricing_date, body.pricing_month,
            body.statement_balance, user_id,
        )
    except (ReconciliationError, AccountNotFoundError) as e:
        await db.rollback()
        raise _to_http(e)
    except (StaleDataError, IntegrityError):
        await db.rollback()
        raise HTTPException(status_code=409, detail=CONFLICT_DETAIL)

    await write_audit_log(
        db, user, "reconciliation.account.reconcile", "reconciliation", body.gl_code,
        {"fund_id": str(body.fund_id), "pricing_date": str(body.pricing_date), **preview.to_dict()},
    )
    await _commit_or_conflict(db)
    return {"success": True, "message": f"GL {body.gl_code} reconciled", "data": _record_out(record)}


@router.post("/reconciliation/reopen")
async def reopen(
    body: ReconciliationTarget,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("reconciliation.reopen")),
):
    """Reopen one reconciled account; allowed only when the whole period is reconciled."""
    ensure_fund_access(user, body.fund_id)
    try:
        record = await ReconciliationService(db).reopen(
            body.fund_id, body.gl_code, body.pricing_date, body.pricing_month,
        )
    except (ReconciliationError, AccountNotFoundError) as e:
        raise _to_http(e)
    except StaleDataError:
        await db.rollback()
        raise HTTPException(status_code=409, detail=CONFLICT_DETAIL)

    await write_audit_log(
        db, user, "reconciliation.account.reopen", "reconciliation", body.gl_code,
        {"fund_id": str(body.fund_id), "pricing_date": str(body.pricing_date),
         "pricing_month": body.pricing_month},
    )
    await _commit_or_conflict(db)
    return {"success": True, "message": f"GL {body.gl_code} reopened", "data": _record_out(record)}
