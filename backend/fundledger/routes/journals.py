"""Journals --- manual journal entries and reversals."""
from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fundledger.database import get_db
from fundledger.middleware.auth import ensure_fund_access, require_permission, write_audit_log
from fundledger.routes.funds import get_fund_or_404

router = APIRouter(prefix="/api/v1/journals", tags=["journals"])


class JournalLineIn(BaseModel):
    gl_code: str
    debit_amount: Decimal = Decimal("0")
    credit_amount: Decimal = Decimal("0")
    memo: str | None = None

    @field_validator("debit_amount", "credit_amount")
    @classmethod
    def non_negative(cls, v):
        if v < 0:
            raise ValueError("Amounts must be non-negative")
        return v


class JournalEntryCreate(BaseModel):
    fund_id: uuid.UUID
    entry_date: date
    memo: str | None = None
    source_reference: str | None = None
    lines: list[JournalLineIn]


def journal_out(je) -> dict:
    lines = sorted(je.lines, key=lambda x: x.line_number)
    return {
        "id": str(je.id),
        "fund_id": str(je.fund_id),
        "entry_date": str(je.entry_date),
        "memo": je.memo,
        "source": je.source,
        "source_reference": je.source_reference,
        "status": je.status,
        "total_debits": float(sum(l.debit_amount for l in lines)),
        "total_credits": float(sum(l.credit_amount for l in lines)),
        "lines": [
            {
                "line_number": l.line_number,
                "gl_code": l.account.gl_code if l.account else None,
                "gl_name": l.account.gl_name if l.account else None,
                "debit_amount": float(l.debit_amount),
                "credit_amount": float(l.credit_amount),
                "memo": l.memo,
            }
            for l in lines
        ],
    }


async def _load_journal(db: AsyncSession, je_id: uuid.UUID):
    from fundledger.models.gl import JournalEntry, JournalLine

    result = await db.execute(
        select(JournalEntry)
        .options(selectinload(JournalEntry.lines).selectinload(JournalLine.account))
        .where(JournalEntry.id == je_id)
    )
    return result.scalar_one_or_none()


@router.get("/fund/{fund_id}")
async def list_journals(
    fund_id: uuid.UUID,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.journals.view")),
):
    from fundledger.models.gl import JournalEntry, JournalLine

    ensure_fund_access(user, fund_id)

    count_stmt = select(func.count(JournalEntry.id)).where(JournalEntry.fund_id == fund_id)
    data_stmt = (
        select(JournalEntry)
        .options(selectinload(JournalEntry.lines).selectinload(JournalLine.account))
        .where(JournalEntry.fund_id == fund_id)
    )
    if date_from:
        count_stmt = count_stmt.where(JournalEntry.entry_date >= date_from)
        data_stmt = data_stmt.where(JournalEntry.entry_date >= date_from)
    if date_to:
        count_stmt = count_stmt.where(JournalEntry.entry_date <= date_to)
        data_stmt = data_stmt.where(JournalEntry.entry_date <= date_to)

    total = (await db.execute(count_stmt)).scalar_one()
    result = await db.execute(
        data_stmt.order_by(JournalEntry.entry_date.desc(), JournalEntry.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "success": True,
        "data": [journal_out(je) for je in result.scalars().unique().all()],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("/{je_id}")
async def get_journal(
    je_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.journals.view")),
):
    je = await _load_journal(db, je_id)
    if not je:
        raise HTTPException(status_code=404, detail="Journal entry not found")
    ensure_fund_access(user, je.fund_id)
    return {"success": True, "data": journal_out(je)}


@router.post("", status_code=201)
async def create_journal(
    body: JournalEntryCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.journals.create")),
):
    """Post a balanced manual journal.  Lines reference GL codes of the fund."""
    from fundledger.models.gl import Account, JournalEntry, JournalLine

    ensure_fund_access(user, body.fund_id)
    await get_fund_or_404(db, body.fund_id)

    if len(body.lines) < 2:
        raise HTTPException(status_code=422, detail="Journal entry must have at least 2 lines")

    total_debits = sum(l.debit_amount for l in body.lines)
    total_credits = sum(l.credit_amount for l in body.lines)
    if total_debits != total_credits:
        raise HTTPException(
            status_code=422,
            detail=f"Debits ({total_debits}) must equal credits ({total_credits})",
        )
    if total_debits == 0:
        raise HTTPException(status_code=422, detail="Journal entry cannot be zero")

    codes = {l.gl_code for l in body.lines}
    result = await db.execute(
        select(Account).where(
            Account.fund_id == body.fund_id,
            Account.gl_code.in_(codes),
            Account.is_active == True,
        )
    )
    accounts = {a.gl_code: a for a in result.scalars().all()}
    unknown = sorted(codes - accounts.keys())
    if unknown:
        raise HTTPException(status_code=422, detail=f"Unknown GL code(s): {', '.join(unknown)}")

    user_id = user["user_id"]
    if not isinstance(user_id, uuid.UUID):
        user_id = uuid.UUID(str(user_id))

    je = JournalEntry(
        fund_id=body.fund_id,
        entry_date=body.entry_date,
        memo=body.memo,
        source="manual",
        source_reference=body.source_reference,
        status="posted",
        created_by=user_id,
    )
    db.add(je)
    await db.flush()

    for i, line in enumerate(body.lines, start=1):
        db.add(JournalLine(
            journal_entry_id=je.id,
            line_number=i,
            account_id=accounts[line.gl_code].id,
            debit_amount=line.debit_amount,
            credit_amount=line.credit_amount,
            memo=line.memo,
        ))

    await write_audit_log(
        db, user, "gl.journal.create", "journal_entry", str(je.id),
        {"fund_id": str(body.fund_id), "total": str(total_debits)},
    )
    await db.commit()

    return {
        "success": True,
        "data": {
            "id": str(je.id),
            "status": je.status,
            "total_debits": float(total_debits),
            "total_credits": float(total_credits),
        },
    }


@router.post("/{je_id}/reverse")
async def reverse_journal(
    je_id: uuid.UUID,
    reversal_date: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("gl.journals.reverse")),
):
    from fundledger.models.gl import JournalEntry, JournalLine

    original = await _load_journal(db, je_id)
    if not original:
        raise HTTPException(status_code=404, detail="Journal entry not found")
    ensure_fund_access(user, original.fund_id)

    if original.status != "posted":
        raise HTTPException(status_code=422, detail="Can only reverse posted entries")

    user_id = user["user_id"]
    if not isinstance(user_id, uuid.UUID):
        user_id = uuid.UUID(str(user_id))

    reversal = JournalEntry(
        fund_id=original.fund_id,
        entry_date=reversal_date or date.today(),
        memo=f"Reversal of {original.id}: {original.memo or ''}",
        source=original.source,
        source_reference=f"reversal:{original.id}",
        status="posted",
        created_by=user_id,
    )
    db.add(reversal)
    await db.flush()

    for i, line in enumerate(sorted(original.lines, key=lambda x: x.line_number), start=1):
        db.add(JournalLine(
            journal_entry_id=reversal.id,
            line_number=i,
            account_id=line.account_id,
            debit_amount=line.credit_amount,  # swapped
            credit_amount=line.debit_amount,  # swapped
            memo=f"Reversal: {line.memo or ''}",
        ))

    original.status = "reversed"
    original.reversed_by_je_id = reversal.id

    await write_audit_log(db, user, "gl.journal.reverse", "journal_entry", str(je_id), {"reversal_id": str(reversal.id)})
    await db.commit()

    return {
        "success": True,
        "data": {"original_id": str(original.id), "reversal_id": str(reversal.id), "status": "reversed"},
    }
