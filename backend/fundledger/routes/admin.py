"""Administration routes --- users, roles, permission overrides, audit log."""
from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.database import get_db
from fundledger.middleware.auth import (
    hash_password,
    require_permission,
    resolve_permissions,
    write_audit_log,
)
from fundledger.rbac import (
    ALL_PERMISSIONS,
    GLOBAL_SCOPE_ROLES,
    ROLE_PERMISSIONS,
    VALID_ROLES,
    permission_description,
)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    username: str
    password: str
    display_name: str
    email: str | None = None
    role: str
    fund_id: uuid.UUID | None = None
    organization_id: uuid.UUID | None = None


class UserUpdate(BaseModel):
    display_name: str | None = None
    email: str | None = None
    role: str | None = None
    fund_id: uuid.UUID | None = None
    is_active: bool | None = None


class PermissionOverrideCreate(BaseModel):
    permission: str
    granted: bool
    reason: str | None = None
    expires_at: datetime | None = None


def _user_out(u) -> dict:
    return {
        "id": str(u.id),
        "username": u.username,
        "display_name": u.display_name,
        "email": u.email,
        "role": u.role,
        "fund_id": str(u.fund_id) if u.fund_id else None,
        "fund_name": u.fund.name if u.fund else None,
        "is_active": u.is_active,
    }


def _validate_role(role: str) -> None:
    if role not in VALID_ROLES:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid role '{role}'. Valid roles: {', '.join(VALID_ROLES)}",
        )


async def _get_user_or_404(db: AsyncSession, user_id: uuid.UUID):
    from fundledger.models.user import User

    result = await db.execute(select(User).where(User.id == user_id))
    u = result.scalar_one_or_none()
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    return u


# ---------------------------------------------------------------------------
# USERS
# ---------------------------------------------------------------------------


@router.get("/users")
async def list_users(
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("admin.users.view")),
):
    from fundledger.models.user import User

    result = await db.execute(select(User).order_by(User.username))
    items = [_user_out(u) for u in result.scalars().all()]
    return {"success": True, "data": items, "total": len(items)}


@router.get("/users/{user_id}")
async def get_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("admin.users.view")),
):
    """A single user with effective permissions and overrides."""
    from fundledger.models.permission import UserPermissionOverride

    u = await _get_user_or_404(db, user_id)
    effective = await resolve_permissions({"user_id": u.id, "role": u.role}, db)

    result = await db.execute(
        select(UserPermissionOverride).where(UserPermissionOverride.user_id == user_id)
    )
    overrides = [
        {
            "id": str(ov.id),
            "permission": ov.permission,
            "granted": ov.granted,
            "reason": ov.reason,
            "expires_at": ov.expires_at.isoformat() if ov.expires_at else None,
        }
        for ov in result.scalars().all()
    ]

    data = _user_out(u)
    data["effective_permissions"] = sorted(effective)
    data["overrides"] = overrides
    return {"success": True, "data": data}


@router.post("/users", status_code=201)
async def create_user(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("admin.users.create")),
):
    from fundledger.models.user import User

    _validate_role(body.role)

    existing = await db.execute(select(User).where(User.username == body.username))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Username already exists")

    new_user = User(
        username=body.username,
        password_hash=hash_password(body.password),
        display_name=body.display_name,
        email=body.email,
        role=body.role,
        fund_id=body.fund_id,
        organization_id=body.organization_id,
    )
    db.add(new_user)
    await db.flush()

    await write_audit_log(
        db, user, "admin.user.create", "user", str(new_user.id),
        {"username": body.username, "role": body.role},
    )
    await db.commit()
    return {
        "success": True,
        "message": "User created",
        "data": {"id": str(new_user.id), "username": new_user.username, "role": new_user.role},
    }


@router.put("/users/{user_id}")
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("admin.users.update")),
):
    u = await _get_user_or_404(db, user_id)
    changes = body.model_dump(exclude_unset=True)
    if "role" in changes:
        _validate_role(changes["role"])

    for field, value in changes.items():
        setattr(u, field, value)

    await write_audit_log(
        db, user, "admin.user.update", "user", str(user_id),
        {k: str(v) for k, v in changes.items()},
    )
    await db.commit()
    return {"success": True, "message": "User updated"}


# ---------------------------------------------------------------------------
# PERMISSION OVERRIDES
# ---------------------------------------------------------------------------


@router.post("/users/{user_id}/permissions", status_code=201)
async def add_permission_override(
    user_id: uuid.UUID,
    body: PermissionOverrideCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("admin.users.manage_permissions")),
):
    from fundledger.models.permission import UserPermissionOverride

    if body.permission not in ALL_PERMISSIONS:
        raise HTTPException(status_code=422, detail=f"Unknown permission '{body.permission}'")
    await _get_user_or_404(db, user_id)

    granted_by = user["user_id"]
    if not isinstance(granted_by, uuid.UUID):
        granted_by = uuid.UUID(str(granted_by))

    override = UserPermissionOverride(
        user_id=user_id,
        permission=body.permission,
        granted=body.granted,
        reason=body.reason,
        granted_by=granted_by,
        expires_at=body.expires_at,
    )
    db.add(override)
    await db.flush()

    action = "admin.permission.grant" if body.granted else "admin.permission.revoke"
    await write_audit_log(
        db, user, action, "user", str(user_id),
        {"permission": body.permission, "reason": body.reason},
    )
    await db.commit()
    return {"success": True, "data": {"id": str(override.id)}}


@router.delete("/users/{user_id}/permissions/{override_id}")
async def remove_permission_override(
    user_id: uuid.UUID,
    override_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_permission("admin.users.manage_permissions")),
):
    from fundledger.models.permission import UserPermissionOverride

    result = await db.execute(
        select(UserPermissionOverride).where(
            UserPermissionOverride.id == override_id,
            UserPermissionOverride.user_id == user_id,
        )
    )
    override = result.scalar_one_or_none()
    if not override:
        raise HTTPException(status_code=404, detail="Permission override not found")

    await db.delete(override)
    await write_audit_log(
        db, user, "admin.permission.delete", "user", str(user_id),
        {"permission": override.permission},
    )
    await db.commit()
    return {"success": True, "message": "Override removed"}


# ---------------------------------------------------------------------------
# ROLES
# ---------------------------------------------------------------------------


@router.get("/roles")
async def list_roles(
    _user: dict = Depends(require_permission("admin.users.view")),
):
    return {
        "success": True,
        "data": [
            {
                "role": role,
                "scope": "global" if role in GLOBAL_SCOPE_ROLES else "fund",
                "permissions": [
                    {"permission": p, "description": permission_description(p)}
                    for p in sorted(ROLE_PERMISSIONS[role])
                ],
            }
            for role in VALID_ROLES
        ],
    }


# ---------------------------------------------------------------------------
# AUDIT LOG
# ---------------------------------------------------------------------------


@router.get("/audit-log")
async def list_audit_log(
    action: str | None = Query(None),
    resource_type: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("admin.audit_log.view")),
):
    from fundledger.models.permission import AuditLog

    count_stmt = select(func.count(AuditLog.id))
    data_stmt = select(AuditLog)
    if action:
        count_stmt = count_stmt.where(AuditLog.action == action)
        data_stmt = data_stmt.where(AuditLog.action == action)
    if resource_type:
        count_stmt = count_stmt.where(AuditLog.resource_type == resource_type)
        data_stmt = data_stmt.where(AuditLog.resource_type == resource_type)

    total = (await db.execute(count_stmt)).scalar_one()
    result = await db.execute(
        data_stmt.order_by(AuditLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    return {
        "success": True,
        "data": [
            {
                "id": str(e.id),
                "username": e.username,
                "action": e.action,
                "resource_type": e.resource_type,
                "resource_id": e.resource_id,
                "details": e.details,
                "category": e.event_category,
                "created_at": e.created_at.isoformat() if e.created_at else None,
            }
            for e in result.scalars().all()
        ],
        "total": total,
        "page": page,
        "page_size": page_size,
    }
