"""Reporting periods (the pricing calendar each reconciliation is keyed to)."""
from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.database import get_db
from fundledger.middleware.auth import ensure_fund_access, require_permission, write_audit_log
from fundledger.routes.funds import get_fund_or_404
from fundledger.services.reconciliation_service import ReconciliationService

router = APIRouter(prefix="/api/v1/pricing", tags=["reporting-periods"])


class ReportingPeriodCreate(BaseModel):
    period_name: str
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


@router.get("/{fund_id}/reporting-periods")
async def list_reporting_periods(
    fund_id: uuid.UUID,
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.periods.view")),
):
    """Periods newest first, each annotated with whether it is fully reconciled."""
    from fundledger.models.period import ReportingPeriod

    ensure_fund_access(user, fund_id)
    result = await db.execute(
        select(ReportingPeriod)
        .where(ReportingPeriod.fund_id == fund_id)
        .order_by(ReportingPeriod.end_date.desc())
        .limit(limit)
    )
    periods = list(result.scalars().all())
    flags = await ReconciliationService(db).period_flags(fund_id, periods)

    rows = [
        {
            "id": str(p.id),
            "period_name": p.period_name,
            "start_date": str(p.start_date),
            "end_date": str(p.end_date),
            "status": p.status,
            "reconciliation_status": (
                "reconciled" if flags[(p.end_date, p.period_name)] else "open"
            ),
        }
        for p in periods
    ]
    return {"rows": rows, "count": len(rows)}


@router.post("/{fund_id}/reporting-periods", status_code=201)
async def create_reporting_period(
    fund_id: uuid.UUID,
    body: ReportingPeriodCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.periods.create")),
):
    from fundledger.models.period import ReportingPeriod

    ensure_fund_access(user, fund_id)
    await get_fund_or_404(db, fund_id)

    existing = await db.execute(
        select(ReportingPeriod).where(
            ReportingPeriod.fund_id == fund_id,
            ReportingPeriod.end_date == body.end_date,
            ReportingPeriod.period_name == body.period_name,
        )
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Reporting period already exists")

    period = ReportingPeriod(fund_id=fund_id, **body.model_dump())
    db.add(period)
    await db.flush()
    await write_audit_log(
        db, user, "gl.period.create", "reporting_period", str(period.id),
        {"period_name": body.period_name, "end_date": str(body.end_date)},
    )
    await db.commit()
    return {
        "success": True,
        "data": {
            "id": str(period.id),
            "period_name": period.period_name,
            "start_date": str(period.start_date),
            "end_date": str(period.end_date),
            "status": period.status,
        },
    }
