"""Trade blotter: booking, listing and newest-first deletion."""
from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.database import get_db
from fundledger.middleware.auth import (
    ensure_fund_access,
    get_fund_scope,
    require_permission,
    write_audit_log,
)
from fundledger.routes.funds import get_fund_or_404
from fundledger.services.continuity import sort_newest_first
from fundledger.services.reconciliation import to_money
from fundledger.services.trade_service import (
    NonContiguousSelectionError,
    TradeNotFoundError,
    TradeService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/trade", tags=["trades"])


class TradeCreate(BaseModel):
    fund_id: uuid.UUID
    symbol_id: str
    side: str
    trade_date: date
    quantity: Decimal
    price: Decimal
    trade_id: str | None = None
    broker: str | None = None

    @field_validator("side")
    @classmethod
    def validate_side(cls, v):
        v = v.lower()
        if v not in ("buy", "sell"):
            raise ValueError("Must be buy or sell")
        return v

    @field_validator("quantity")
    @classmethod
    def positive_quantity(cls, v):
        if v <= 0:
            raise ValueError("Quantity must be positive")
        return v

    @field_validator("price")
    @classmethod
    def non_negative_price(cls, v):
        if v < 0:
            raise ValueError("Price must be non-negative")
        return v


class BulkDeleteRequest(BaseModel):
    trade_ids: list[str] = Field(validation_alias=AliasChoices("trade_ids", "tradeIds"))


def trade_out(t) -> dict:
    return {
        "trade_id": t.trade_id,
        "fund_id": str(t.fund_id),
        "symbol_id": t.symbol_id,
        "side": t.side,
        "trade_date": str(t.trade_date),
        "quantity": float(t.quantity),
        "price": float(t.price),
        "amount": float(t.amount),
        "broker": t.broker,
        "created_at": t.created_at.isoformat() if t.created_at else None,
    }


async def _delete(trade_ids: list[str], db: AsyncSession, user: dict):
    service = TradeService(db)

    scope = get_fund_scope(user)
    if scope is not None:
        foreign = [t.trade_id for t in await service.find(trade_ids) if t.fund_id != scope]
        if foreign:
            raise HTTPException(status_code=403, detail="Access to this fund is not permitted")

    try:
        outcome = await service.delete_trades(trade_ids)
    except TradeNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NonContiguousSelectionError as e:
        await db.rollback()
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "message": str(e),
                "issues": [issue.to_dict() for issue in e.issues],
            },
        )

    await write_audit_log(
        db, user, "trades.trade.delete", "trade", ",".join(outcome.deleted_ids),
        {"deleted_count": outcome.deleted_count, "groups": outcome.groups},
    )
    await db.commit()

    return {
        "success": True,
        "message": f"Successfully deleted {outcome.deleted_count} trade(s)",
        "data": {
            "deleted_count": outcome.deleted_count,
            "requested_count": outcome.requested_count,
            "deleted": outcome.deleted_ids,
        },
    }


@router.get("/fund/{fund_id}")
async def list_trades(
    fund_id: uuid.UUID,
    symbol_id: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("trades.view")),
):
    """Trades of a fund, newest first (the order deletions must follow)."""
    from fundledger.models.trade import Trade

    ensure_fund_access(user, fund_id)
    stmt = select(Trade).where(Trade.fund_id == fund_id)
    if symbol_id:
        stmt = stmt.where(Trade.symbol_id == symbol_id)

    result = await db.execute(stmt)
    return {"success": True, "data": [trade_out(t) for t in sort_newest_first(result.scalars().all())]}


@router.post("", status_code=201)
async def create_trade(
    body: TradeCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("trades.create")),
):
    from fundledger.models.trade import Trade

    ensure_fund_access(user, body.fund_id)
    await get_fund_or_404(db, body.fund_id)

    trade_id = body.trade_id or f"TRD-{uuid.uuid4().hex[:12].upper()}"
    existing = await db.execute(select(Trade).where(Trade.trade_id == trade_id))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail=f"Trade {trade_id} already exists")

    trade = Trade(
        trade_id=trade_id,
        fund_id=body.fund_id,
        symbol_id=body.symbol_id,
        side=body.side,
        trade_date=body.trade_date,
        quantity=body.quantity,
        price=body.price,
        amount=to_money(body.quantity * body.price),
        broker=body.broker,
    )
    db.add(trade)
    await db.flush()
    await write_audit_log(db, user, "trades.trade.create", "trade", trade_id, {"symbol_id": body.symbol_id})
    await db.commit()
    return {"success": True, "message": "Trade created", "data": trade_out(trade)}


@router.delete("/bulk/delete")
async def bulk_delete_trades(
    body: BulkDeleteRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("trades.delete")),
):
    """Delete trades all-or-nothing; each (fund, symbol) group must be a newest-first prefix."""
    if not body.trade_ids:
        raise HTTPException(status_code=400, detail="No trade IDs provided")
    logger.info(f"Bulk delete requested for {len(body.trade_ids)} trade(s) by {user['username']}")
    return await _delete(body.trade_ids, db, user)


@router.delete("/{trade_id}")
async def delete_trade(
    trade_id: str,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("trades.delete")),
):
    """Delete one trade; only the newest trade of its symbol qualifies."""
    return await _delete([trade_id], db, user)
