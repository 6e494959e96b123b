"""Retention purge for audit events.

Deletes expired READ_ACCESS and SYSTEM events from the ``audit_log`` table
and drops the matching lines from the JSONL mirror.  MUTATION events are
never deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import delete

from fundledger.services.audit_service import AuditEventCategory

logger = logging.getLogger(__name__)


def retention_windows(read_days: int, system_days: int) -> dict[AuditEventCategory, int | None]:
    return {
        AuditEventCategory.MUTATION: None,
        AuditEventCategory.READ_ACCESS: read_days,
        AuditEventCategory.SYSTEM: system_days,
    }


def _purge_jsonl(jsonl_dir: Path, windows: dict, now: datetime) -> int:
    removed = 0
    if not jsonl_dir.exists():
        return removed

    for jsonl_file in sorted(jsonl_dir.glob("*.jsonl")):
        try:
            file_date = datetime.strptime(jsonl_file.stem, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except ValueError:
            logger.warning(f"Skipping unexpected audit file {jsonl_file.name}")
            continue

        age_days = (now - file_date).days
        expired = {
            cat.value for cat, days in windows.items()
            if days is not None and age_days > days
        }
        if not expired:
            continue

        kept: list[str] = []
        with open(jsonl_file, encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    category = json.loads(line).get("category")
                except json.JSONDecodeError:
                    kept.append(line)
                    continue
                if category in expired:
                    removed += 1
                else:
                    kept.append(line)

        if kept:
            jsonl_file.write_text("".join(kept), encoding="utf-8")
        else:
            jsonl_file.unlink()

    return removed


async def purge_audit_retention(
    audit_base_path: str,
    session_factory: Any,
    read_days: int = 90,
    system_days: int = 30,
    now: datetime | None = None,
) -> dict[str, int]:
    """Purge expired audit events from the database and the JSONL mirror.

    ``session_factory`` is an ``async_sessionmaker`` (e.g. ``AsyncSessionLocal``).
    Returns a summary of rows/lines removed.
    """
    from fundledger.models.permission import AuditLog

    now = now or datetime.now(timezone.utc)
    windows = retention_windows(read_days, system_days)
    summary = {"db_deleted": 0, "jsonl_lines_removed": 0}

    summary["jsonl_lines_removed"] = _purge_jsonl(Path(audit_base_path) / "jsonl", windows, now)

    async with session_factory() as session:
        for category, days in windows.items():
            if days is None:
                continue
            cutoff = (now - timedelta(days=days)).replace(tzinfo=None)
            result = await session.execute(
                delete(AuditLog).where(
                    AuditLog.event_category == category.value,
                    AuditLog.created_at < cutoff,
                )
            )
            summary["db_deleted"] += result.rowcount or 0
        await session.commit()

    return summary
