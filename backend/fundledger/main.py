"""FundLedger back-office API."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from datetime import datetime, timezone
from uuid import uuid4
import logging

from fundledger.config import settings
from fundledger.database import async_engine, AsyncSessionLocal
from fundledger.middleware.audit_middleware import AuditReadAccessMiddleware
from fundledger.services.audit_service import AuditEvent, AuditEventCategory, get_audit_writer

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _system_event(action: str, details: dict | None = None) -> None:
    """Fire a SYSTEM-category audit event (non-blocking)."""
    get_audit_writer().fire_and_forget(AuditEvent(
        id=uuid4(),
        timestamp=datetime.now(timezone.utc),
        category=AuditEventCategory.SYSTEM,
        user_id=None,
        username="system",
        action=action,
        resource_type="system",
        resource_id=None,
        details=details,
        ip_address=None,
    ))


scheduler = AsyncIOScheduler()


async def run_audit_retention_purge():
    """Purge expired read-access and system events from the table and the JSONL mirror."""
    from fundledger.services.audit_retention import purge_audit_retention

    _system_event("system.scheduler.audit_retention_purge", {"status": "started"})
    try:
        summary = await purge_audit_retention(
            settings.AUDIT_STORAGE_PATH,
            AsyncSessionLocal,
            read_days=settings.AUDIT_READ_RETENTION_DAYS,
            system_days=settings.AUDIT_SYSTEM_RETENTION_DAYS,
        )
        logger.info(f"Audit retention purge: {summary}")
        _system_event("system.scheduler.audit_retention_purge", {
            "status": "completed", **summary,
        })
    except Exception as e:
        logger.error(f"Audit retention purge failed: {e}")
        _system_event("system.scheduler.audit_retention_purge", {
            "status": "failed", "error": str(e),
        })


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting FundLedger API...")
    _system_event("system.startup")

    try:
        async with async_engine.begin() as conn:
            await conn.exec_driver_sql("SELECT 1")
        logger.info("Database connection verified")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")

    scheduler.add_job(run_audit_retention_purge, "interval", hours=24, id="audit_retention_purge")
    scheduler.start()
    logger.info("Scheduled jobs started (audit retention)")

    yield

    _system_event("system.shutdown")
    scheduler.shutdown()
    await async_engine.dispose()
    logger.info("FundLedger API shut down")


app = FastAPI(
    title="FundLedger",
    description="Fund accounting back office: trades, chart of accounts, reconciliation and period-end reports",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SENSITIVE_READ_PREFIXES = [
    "/api/v1/reports/",
    "/api/v1/admin/audit-log",
    "/api/v1/admin/users",
]
app.add_middleware(AuditReadAccessMiddleware, prefixes=SENSITIVE_READ_PREFIXES)

from fundledger.routes import (
    accounts, admin, auth, configuration, funds, journals, periods, reconciliation, reports, trades,
)

app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(funds.router)
app.include_router(accounts.router)
app.include_router(journals.router)
app.include_router(trades.router)
app.include_router(periods.router)
app.include_router(reconciliation.router)
app.include_router(reports.router)
app.include_router(configuration.router)


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "FundLedger API", "version": "1.0.0"}
