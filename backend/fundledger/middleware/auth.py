"""Authentication and authorization for FundLedger.

Provides:
- Password hashing (bcrypt)
- JWT creation / validation
- ``get_current_user()`` dependency
- ``require_permission()`` dependency factory
- Fund data-scoping helpers
- Audit-log helper
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.config import settings
from fundledger.database import get_db
from fundledger.rbac import GLOBAL_SCOPE_ROLES, get_role_permissions

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain: str, hashed: str) -> bool:
    """Compare a plain-text password against a bcrypt hash."""
    return _pwd_context.verify(plain, hashed)


def hash_password(plain: str) -> str:
    """Return the bcrypt hash of a plain-text password."""
    return _pwd_context.hash(plain)


# ---------------------------------------------------------------------------
# JWT helpers
# ---------------------------------------------------------------------------


def create_access_token(data: dict[str, Any]) -> str:
    """Create a signed JWT containing *sub* (username), *role*, *fund_id* and *exp*."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRY_MINUTES)
    to_encode.update({"exp": expire})

    # UUIDs are not JSON-serialisable
    for key in ("user_id", "fund_id"):
        if to_encode.get(key) is not None and not isinstance(to_encode[key], str):
            to_encode[key] = str(to_encode[key])

    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def token_for_user(user_row) -> str:
    return create_access_token({
        "sub": user_row.username,
        "role": user_row.role,
        "user_id": user_row.id,
        "fund_id": user_row.fund_id,
    })


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login/form")

# ---------------------------------------------------------------------------
# Current-user dependency
# ---------------------------------------------------------------------------


async def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Decode the JWT, look up the user, and return a dict describing them.

    Raises ``HTTPException(401)`` when the token is invalid or the user cannot
    be found.  The dict is also stored on ``request.state._audit_user`` for the
    read-access audit middleware.
    """
    from fundledger.models.user import User

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
        username: str | None = payload.get("sub")
        if username is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    result = await db.execute(select(User).where(User.username == username))
    user: User | None = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    user_dict = {
        "user_id": user.id,
        "username": user.username,
        "role": user.role,
        "display_name": user.display_name,
        "email": user.email,
        "fund_id": str(user.fund_id) if user.fund_id else None,
    }

    request.state._audit_user = user_dict

    return user_dict


# ---------------------------------------------------------------------------
# Permission resolution (role base + DB overrides)
# ---------------------------------------------------------------------------


async def resolve_permissions(
    user: dict[str, Any],
    db: AsyncSession,
) -> set[str]:
    """Compute the effective permission set for a user.

    1. Start with role base permissions from ``ROLE_PERMISSIONS``.
    2. Apply per-user overrides (grants add, revokes remove), skipping
       expired overrides.
    """
    from fundledger.models.permission import UserPermissionOverride

    base = get_role_permissions(user["role"]).copy()

    user_id = user["user_id"]
    if not isinstance(user_id, uuid.UUID):
        user_id = uuid.UUID(str(user_id))

    result = await db.execute(
        select(UserPermissionOverride).where(UserPermissionOverride.user_id == user_id)
    )
    overrides = result.scalars().all()

    now = datetime.now(timezone.utc)
    for ov in overrides:
        if ov.expires_at and ov.expires_at.replace(tzinfo=timezone.utc) < now:
            continue
        if ov.granted:
            base.add(ov.permission)
        else:
            base.discard(ov.permission)

    return base


def require_permission(*permissions: str):
    """Return a FastAPI dependency that ensures the authenticated user has
    ALL of the specified permissions (role-based + overrides).

    Usage::

        @router.delete("/trade/{trade_id}")
        async def delete_trade(
            trade_id: str,
            db: AsyncSession = Depends(get_db),
            user: dict = Depends(require_permission("trades.delete")),
        ):
            ...
    """
    required = set(permissions)

    async def _check_permission(
        current_user: dict[str, Any] = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> dict[str, Any]:
        effective = await resolve_permissions(current_user, db)
        missing = required - effective
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(sorted(missing))}.",
            )
        return current_user

    return _check_permission


# ---------------------------------------------------------------------------
# Data scoping: fund-level isolation
# ---------------------------------------------------------------------------


def get_fund_scope(user: dict[str, Any]) -> uuid.UUID | None:
    """Return the fund UUID the user is pinned to, or ``None`` for global access."""
    if user["role"] in GLOBAL_SCOPE_ROLES:
        return None
    fund_id = user.get("fund_id")
    if fund_id is None:
        return None
    return uuid.UUID(fund_id) if isinstance(fund_id, str) else fund_id


def ensure_fund_access(user: dict[str, Any], fund_id: uuid.UUID) -> None:
    """Raise 403 when a fund-scoped user asks for another fund's data."""
    scope = get_fund_scope(user)
    if scope is not None and scope != fund_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access to this fund is not permitted",
        )


# ---------------------------------------------------------------------------
# Audit-log helper
# ---------------------------------------------------------------------------


async def write_audit_log(
    db: AsyncSession,
    user: dict[str, Any] | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict | None = None,
    ip_address: str | None = None,
) -> None:
    """Add an ``audit_log`` row to the session, then mirror it to JSONL.

    The caller owns the transaction: the row is committed together with the
    change it describes.
    """
    from fundledger.models.permission import AuditLog
    from fundledger.services.audit_service import AuditEvent, classify_action, get_audit_writer

    category = classify_action(action)

    user_id = None
    username = None
    if user:
        uid = user.get("user_id")
        if uid:
            user_id = uid if isinstance(uid, uuid.UUID) else uuid.UUID(str(uid))
        username = user.get("username")

    entry = AuditLog(
        user_id=user_id,
        username=username,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=ip_address,
        event_category=category.value,
    )
    db.add(entry)
    await db.flush()

    get_audit_writer().fire_and_forget(AuditEvent(
        id=entry.id,
        timestamp=datetime.now(timezone.utc),
        category=category,
        user_id=str(user_id) if user_id else None,
        username=username,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=ip_address,
    ))
