"""Chart of accounts, per fund."""
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.database import get_db
from fundledger.middleware.auth import ensure_fund_access, require_permission, write_audit_log
from fundledger.models.gl import ACCOUNT_TYPES
from fundledger.routes.funds import get_fund_or_404

router = APIRouter(prefix="/api/v1/chart-of-accounts", tags=["chart-of-accounts"])

ACCOUNT_CATEGORIES = ("general", "bank", "broker")


class AccountCreate(BaseModel):
    fund_id: uuid.UUID
    gl_code: str
    gl_name: str
    account_type: str
    normal_balance: str
    category: str = "general"
    description: str | None = None

    @field_validator("account_type")
    @classmethod
    def validate_account_type(cls, v):
        if v not in ACCOUNT_TYPES:
            raise ValueError("Must be asset, liability, equity, revenue, or expense")
        return v

    @field_validator("normal_balance")
    @classmethod
    def validate_normal_balance(cls, v):
        if v not in ("debit", "credit"):
            raise ValueError("Must be debit or credit")
        return v

    @field_validator("category")
    @classmethod
    def validate_category(cls, v):
        if v not in ACCOUNT_CATEGORIES:
            raise ValueError("Must be general, bank, or broker")
        return v


class AccountUpdate(BaseModel):
    gl_name: str | None = None
    description: str | None = None
    is_active: bool | None = None


def account_out(a) -> dict:
    return {
        "id": str(a.id),
        "fund_id": str(a.fund_id),
        "gl_code": a.gl_code,
        "gl_name": a.gl_name,
        "account_type": a.account_type,
        "normal_balance": a.normal_balance,
        "category": a.category,
        "is_active": a.is_active,
        "description": a.description,
    }


@router.get("/fund/{fund_id}")
async def list_accounts(
    fund_id: uuid.UUID,
    account_type: str | None = Query(None),
    is_active: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.accounts.view")),
):
    from fundledger.models.gl import Account

    ensure_fund_access(user, fund_id)
    stmt = select(Account).where(Account.fund_id == fund_id, Account.is_active == is_active)
    if account_type:
        stmt = stmt.where(Account.account_type == account_type)

    result = await db.execute(stmt.order_by(Account.gl_code))
    return {"success": True, "data": [account_out(a) for a in result.scalars().all()]}


@router.post("", status_code=201)
async def create_account(
    body: AccountCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.accounts.create")),
):
    from fundledger.models.gl import Account

    ensure_fund_access(user, body.fund_id)
    await get_fund_or_404(db, body.fund_id)

    existing = await db.execute(
        select(Account).where(Account.fund_id == body.fund_id, Account.gl_code == body.gl_code)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail=f"GL code {body.gl_code} already exists for this fund")

    account = Account(**body.model_dump())
    db.add(account)
    await db.flush()
    await write_audit_log(db, user, "gl.account.create", "account", str(account.id), {"gl_code": body.gl_code})
    await db.commit()
    return {"success": True, "data": account_out(account)}


@router.put("/{account_id}")
async def update_account(
    account_id: uuid.UUID,
    body: AccountUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.accounts.update")),
):
    from fundledger.models.gl import Account

    result = await db.execute(select(Account).where(Account.id == account_id))
    account = result.scalar_one_or_none()
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    ensure_fund_access(user, account.fund_id)

    changes = body.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(account, field, value)

    await write_audit_log(db, user, "gl.account.update", "account", str(account_id), changes)
    await db.commit()
    return {"success": True, "message": "Account updated"}
