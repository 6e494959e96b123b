"""Authentication routes."""
from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.database import get_db
from fundledger.middleware.auth import (
    get_current_user,
    resolve_permissions,
    token_for_user,
    verify_password,
    write_audit_log,
)
from fundledger.rbac import GLOBAL_SCOPE_ROLES
from fundledger.services.audit_service import AuditEvent, AuditEventCategory, get_audit_writer

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _log_failed_auth(username: str, request: Request) -> None:
    get_audit_writer().fire_and_forget(AuditEvent(
        id=uuid4(),
        timestamp=datetime.now(timezone.utc),
        category=AuditEventCategory.SYSTEM,
        user_id=None,
        username=username,
        action="auth.failed",
        resource_type="auth",
        resource_id=None,
        details={"reason": "invalid_credentials"},
        ip_address=request.client.host if request.client else None,
    ))


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


async def _login(username: str, password: str, request: Request, db: AsyncSession) -> TokenResponse:
    from fundledger.models.user import User

    result = await db.execute(
        select(User).where(User.username == username, User.is_active == True)
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(password, user.password_hash):
        _log_failed_auth(username, request)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    user_dict = {
        "user_id": user.id,
        "username": user.username,
        "role": user.role,
        "fund_id": str(user.fund_id) if user.fund_id else None,
    }
    permissions = await resolve_permissions(user_dict, db)

    await write_audit_log(
        db,
        user_dict,
        "auth.login",
        resource_type="user",
        resource_id=str(user.id),
        details={"username": user.username},
        ip_address=request.client.host if request.client else None,
    )
    await db.commit()

    return TokenResponse(
        access_token=token_for_user(user),
        user={
            "id": str(user.id),
            "username": user.username,
            "display_name": user.display_name,
            "email": user.email,
            "role": user.role,
            "fund_id": user_dict["fund_id"],
            "permissions": sorted(permissions),
            "scope": "global" if user.role in GLOBAL_SCOPE_ROLES else "fund",
        },
    )


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    return await _login(body.username, body.password, request, db)


@router.post("/login/form", response_model=TokenResponse)
async def login_form(
    request: Request,
    form: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """OAuth2 password flow used by the interactive API docs."""
    return await _login(form.username, form.password, request, db)


@router.get("/me")
async def get_me(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    permissions = await resolve_permissions(user, db)
    return {
        "username": user["username"],
        "role": user["role"],
        "user_id": str(user["user_id"]),
        "fund_id": user.get("fund_id"),
        "display_name": user.get("display_name", user["username"]),
        "email": user.get("email"),
        "permissions": sorted(permissions),
        "scope": "global" if user["role"] in GLOBAL_SCOPE_ROLES else "fund",
    }


@router.post("/refresh")
async def refresh_token(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    from fundledger.models.user import User

    result = await db.execute(
        select(User).where(User.username == user["username"], User.is_active == True)
    )
    user_row = result.scalar_one_or_none()
    if not user_row:
        raise HTTPException(status_code=401, detail="User not found")

    return {"access_token": token_for_user(user_row), "token_type": "bearer"}
