"""Organizations and funds."""
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.database import get_db
from fundledger.middleware.auth import (
    ensure_fund_access,
    get_fund_scope,
    require_permission,
    write_audit_log,
)

router = APIRouter(prefix="/api/v1", tags=["funds"])


class OrganizationCreate(BaseModel):
    code: str
    name: str


class FundCreate(BaseModel):
    code: str
    name: str
    base_currency: str = "USD"
    organization_id: uuid.UUID | None = None
    description: str | None = None

    @field_validator("base_currency")
    @classmethod
    def validate_currency(cls, v):
        if len(v) != 3 or not v.isalpha():
            raise ValueError("Must be a 3-letter ISO currency code")
        return v.upper()


class FundUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    is_active: bool | None = None


def _fund_out(f) -> dict:
    return {
        "fund_id": str(f.id),
        "code": f.code,
        "name": f.name,
        "base_currency": f.base_currency,
        "organization_id": str(f.organization_id) if f.organization_id else None,
        "organization_name": f.organization.name if f.organization else None,
        "description": f.description,
        "is_active": f.is_active,
    }


async def get_fund_or_404(db: AsyncSession, fund_id: uuid.UUID):
    from fundledger.models.fund import Fund

    result = await db.execute(select(Fund).where(Fund.id == fund_id))
    fund = result.scalar_one_or_none()
    if not fund:
        raise HTTPException(status_code=404, detail="Fund not found")
    return fund


# ---------------------------------------------------------------------------
# ORGANIZATIONS
# ---------------------------------------------------------------------------


@router.get("/organizations")
async def list_organizations(
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("org.organizations.view")),
):
    from fundledger.models.org import Organization

    result = await db.execute(
        select(Organization).where(Organization.is_active == True).order_by(Organization.code)
    )
    return {
        "success": True,
        "data": [
            {"id": str(o.id), "code": o.code, "name": o.name, "is_active": o.is_active}
            for o in result.scalars().all()
        ],
    }


@router.post("/organizations", status_code=201)
async def create_organization(
    body: OrganizationCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("org.organizations.create")),
):
    from fundledger.models.org import Organization

    existing = await db.execute(select(Organization).where(Organization.code == body.code))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Organization code already exists")

    org = Organization(code=body.code, name=body.name)
    db.add(org)
    await db.flush()
    await write_audit_log(db, user, "org.organization.create", "organization", str(org.id), {"code": body.code})
    await db.commit()
    return {"success": True, "data": {"id": str(org.id), "code": org.code, "name": org.name}}


# ---------------------------------------------------------------------------
# FUNDS
# ---------------------------------------------------------------------------


@router.get("/funds")
async def list_funds(
    is_active: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("org.funds.view")),
):
    from fundledger.models.fund import Fund

    stmt = select(Fund).where(Fund.is_active == is_active)
    scope = get_fund_scope(user)
    if scope is not None:
        stmt = stmt.where(Fund.id == scope)

    result = await db.execute(stmt.order_by(Fund.code))
    items = [_fund_out(f) for f in result.scalars().all()]
    return {"success": True, "data": items, "total": len(items)}


@router.get("/funds/{fund_id}")
async def get_fund(
    fund_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("org.funds.view")),
):
    ensure_fund_access(user, fund_id)
    return {"success": True, "data": _fund_out(await get_fund_or_404(db, fund_id))}


@router.post("/funds", status_code=201)
async def create_fund(
    body: FundCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("org.funds.create")),
):
    from fundledger.models.fund import Fund

    existing = await db.execute(select(Fund).where(Fund.code == body.code))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Fund code already exists")

    fund = Fund(
        code=body.code,
        name=body.name,
        base_currency=body.base_currency,
        organization_id=body.organization_id,
        description=body.description,
    )
    db.add(fund)
    await db.flush()
    await write_audit_log(db, user, "org.fund.create", "fund", str(fund.id), {"code": body.code})
    await db.commit()
    return {"success": True, "data": {"fund_id": str(fund.id), "code": fund.code, "name": fund.name}}


@router.put("/funds/{fund_id}")
async def update_fund(
    fund_id: uuid.UUID,
    body: FundUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("org.funds.update")),
):
    ensure_fund_access(user, fund_id)
    fund = await get_fund_or_404(db, fund_id)

    changes = body.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(fund, field, value)

    await write_audit_log(db, user, "org.fund.update", "fund", str(fund_id), changes)
    await db.commit()
    return {"success": True, "message": "Fund updated"}
