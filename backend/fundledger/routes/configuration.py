"""Reference data maintenance: banks, brokers and exchanges."""
from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.database import get_db
from fundledger.middleware.auth import require_permission, write_audit_log
from fundledger.models.config import Bank, Broker, Exchange

router = APIRouter(prefix="/api/v1/configuration", tags=["configuration"])

# path segment -> (model, audit resource name)
CONFIG_ENTITIES = {
    "banks": (Bank, "bank"),
    "brokers": (Broker, "broker"),
    "exchanges": (Exchange, "exchange"),
}


class ConfigEntityCreate(BaseModel):
    code: str
    name: str
    start_date: date | None = None
    mic: str | None = None

    @field_validator("code", "name")
    @classmethod
    def not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Must not be blank")
        return v


class ConfigEntityUpdate(BaseModel):
    name: str | None = None
    start_date: date | None = None
    mic: str | None = None
    is_active: bool | None = None


def _entity(kind: str):
    if kind not in CONFIG_ENTITIES:
        raise HTTPException(status_code=404, detail=f"Unknown configuration entity '{kind}'")
    return CONFIG_ENTITIES[kind]


def _check_fields(kind: str, model, fields: dict) -> None:
    foreign = sorted(f for f in fields if not hasattr(model, f))
    if foreign:
        raise HTTPException(
            status_code=422,
            detail=f"Field(s) {', '.join(foreign)} do not apply to {kind}",
        )


def entity_out(e) -> dict:
    data = {
        "id": str(e.id),
        "code": e.code,
        "name": e.name,
        "is_active": e.is_active,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }
    if hasattr(e, "start_date"):
        data["start_date"] = str(e.start_date) if e.start_date else None
    if hasattr(e, "mic"):
        data["mic"] = e.mic
    return data


async def _get_or_404(db: AsyncSession, model, entity_id: uuid.UUID):
    result = await db.execute(select(model).where(model.id == entity_id))
    entity = result.scalar_one_or_none()
    if not entity:
        raise HTTPException(status_code=404, detail=f"{model.__name__} not found")
    return entity


@router.get("/{kind}")
async def list_entities(
    kind: str,
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("config.entities.view")),
):
    model, _ = _entity(kind)
    stmt = select(model)
    if not include_inactive:
        stmt = stmt.where(model.is_active == True)
    result = await db.execute(stmt.order_by(model.code))
    return {"success": True, "data": [entity_out(e) for e in result.scalars().all()]}


@router.post("/{kind}", status_code=201)
async def create_entity(
    kind: str,
    body: ConfigEntityCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("config.entities.manage")),
):
    model, resource = _entity(kind)
    fields = body.model_dump(exclude_none=True)
    _check_fields(kind, model, fields)

    existing = await db.execute(select(model).where(model.code == body.code))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail=f"{model.__name__} {body.code} already exists")

    entity = model(**fields)
    db.add(entity)
    await db.flush()
    await write_audit_log(db, user, f"config.{resource}.create", resource, str(entity.id), {"code": body.code})
    await db.commit()
    await db.refresh(entity)
    return {"success": True, "message": f"{model.__name__} successfully created", "data": entity_out(entity)}


@router.put("/{kind}/{entity_id}")
async def update_entity(
    kind: str,
    entity_id: uuid.UUID,
    body: ConfigEntityUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("config.entities.manage")),
):
    model, resource = _entity(kind)
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    _check_fields(kind, model, changes)

    entity = await _get_or_404(db, model, entity_id)
    for field, value in changes.items():
        setattr(entity, field, value)

    await write_audit_log(
        db, user, f"config.{resource}.update", resource, str(entity_id),
        {k: str(v) if isinstance(v, date) else v for k, v in changes.items()},
    )
    await db.commit()
    await db.refresh(entity)
    return {"success": True, "message": f"{model.__name__} successfully updated", "data": entity_out(entity)}


@router.delete("/{kind}/{entity_id}")
async def delete_entity(
    kind: str,
    entity_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("config.entities.manage")),
):
    model, resource = _entity(kind)
    entity = await _get_or_404(db, model, entity_id)
    data = entity_out(entity)

    await db.delete(entity)
    await write_audit_log(db, user, f"config.{resource}.delete", resource, str(entity_id), {"code": entity.code})
    await db.commit()
    return {"success": True, "message": f"{model.__name__} successfully deleted", "data": data}
