"""Middleware that logs read-access events for sensitive endpoints.

Intercepts successful GET requests to configurable route prefixes (the
financial reports, the audit log) and mirrors a ``READ_ACCESS`` audit event
fire-and-forget so it does not slow down the response.

User information is read from ``request.state._audit_user``, set by
``get_current_user()``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from fundledger.services.audit_service import AuditEvent, AuditEventCategory, get_audit_writer


class AuditReadAccessMiddleware(BaseHTTPMiddleware):
    """Log read-access events for sensitive data views."""

    def __init__(self, app, prefixes: list[str]) -> None:
        super().__init__(app)
        self.prefixes = prefixes

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if request.method != "GET" or not path.startswith(tuple(self.prefixes)):
            return await call_next(request)

        response = await call_next(request)

        if 200 <= response.status_code < 300:
            user_info = getattr(request.state, "_audit_user", None)
            get_audit_writer().fire_and_forget(AuditEvent(
                id=uuid4(),
                timestamp=datetime.now(timezone.utc),
                category=AuditEventCategory.READ_ACCESS,
                user_id=str(user_info["user_id"]) if user_info else None,
                username=user_info.get("username") if user_info else None,
                action=f"read.{path.strip('/').replace('/', '.')}",
                resource_type="endpoint",
                resource_id=path,
                details={
                    "query_params": dict(request.query_params),
                    "status_code": response.status_code,
                },
                ip_address=request.client.host if request.client else None,
            ))

        return response
