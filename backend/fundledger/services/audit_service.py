"""Audit event mirroring.

Every audit event is written to the ``audit_log`` table by
``write_audit_log()`` and mirrored, fire-and-forget, into a daily JSONL file
so the trail survives a database restore.  Events are categorised for tiered
retention:

* **MUTATION** -- kept forever (trade deletes, reconcile, reopen, logins, ...)
* **READ_ACCESS** -- purged after ``AUDIT_READ_RETENTION_DAYS`` (report views)
* **SYSTEM** -- purged after ``AUDIT_SYSTEM_RETENTION_DAYS`` (scheduler runs, startup)
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID

logger = logging.getLogger(__name__)


class AuditEventCategory(str, enum.Enum):
    MUTATION = "mutation"
    READ_ACCESS = "read_access"
    SYSTEM = "system"


@dataclasses.dataclass(frozen=True)
class AuditEvent:
    id: UUID
    timestamp: datetime
    category: AuditEventCategory
    user_id: str | None
    username: str | None
    action: str
    resource_type: str | None
    resource_id: str | None
    details: dict | None
    ip_address: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "user_id": self.user_id,
            "username": self.username,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
            "ip_address": self.ip_address,
        }

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)


# ---------------------------------------------------------------------------
# Action → category classifier
# ---------------------------------------------------------------------------

_MUTATION_KEYWORDS = {
    "create",
    "update",
    "delete",
    "reverse",
    "reconcile",
    "initiate",
    "reopen",
    "login",
    "grant",
    "revoke",
}

_SYSTEM_PREFIXES = (
    "system.",
    "scheduler.",
    "auth.failed",
)

_READ_KEYWORDS = ("view", "read", "list", "export", "report")


def classify_action(action: str) -> AuditEventCategory:
    """Map an action string to a retention category."""
    action_lower = action.lower()

    if action_lower.startswith(_SYSTEM_PREFIXES):
        return AuditEventCategory.SYSTEM

    parts = action_lower.replace(".", "_").split("_")
    if any(part in _MUTATION_KEYWORDS for part in parts):
        return AuditEventCategory.MUTATION

    if any(kw in action_lower for kw in _READ_KEYWORDS):
        return AuditEventCategory.READ_ACCESS

    # Unknown actions are kept forever
    return AuditEventCategory.MUTATION


# ---------------------------------------------------------------------------
# JSONL mirror writer
# ---------------------------------------------------------------------------


class AuditMirrorWriter:
    """Appends audit events to ``<base_path>/jsonl/YYYY-MM-DD.jsonl``."""

    def __init__(self, base_path: str) -> None:
        self.base_path = Path(base_path)
        self.jsonl_dir = self.base_path / "jsonl"
        self.jsonl_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, dt: datetime) -> Path:
        return self.jsonl_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def write_sync(self, event: AuditEvent) -> None:
        with open(self.path_for(event.timestamp), "a", encoding="utf-8") as f:
            f.write(event.to_json_line() + "\n")

    async def write_async(self, event: AuditEvent) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.write_sync, event)

    def fire_and_forget(self, event: AuditEvent) -> None:
        """Schedule the write without awaiting.  Failures are logged only."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (e.g. during shutdown)
            try:
                self.write_sync(event)
            except OSError:
                logger.exception("Audit mirror write failed (sync fallback)")
            return
        loop.create_task(self._safe_write(event))

    async def _safe_write(self, event: AuditEvent) -> None:
        try:
            await self.write_async(event)
        except OSError:
            logger.exception("Audit mirror write failed for event %s", event.id)


_writer: AuditMirrorWriter | None = None


def get_audit_writer() -> AuditMirrorWriter:
    """Lazy-initialise the process-wide mirror writer."""
    global _writer
    if _writer is None:
        from fundledger.config import settings

        _writer = AuditMirrorWriter(settings.AUDIT_STORAGE_PATH)
    return _writer
