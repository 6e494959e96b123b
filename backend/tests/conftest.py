"""
Test fixtures for FundLedger.

Tests run in-process against the ASGI app through ``httpx.ASGITransport`` with
an in-memory SQLite database (aiosqlite) that is rebuilt for every test.  The
seeded fund ALPHA has two reconcilable accounts (bank 1010, broker 1020) and a
few general ledger accounts; fund BETA exists for scoping checks.
"""
import os
import tempfile
import uuid
from datetime import date, datetime
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("AUDIT_STORAGE_PATH", tempfile.mkdtemp(prefix="fundledger-audit-"))
os.environ.setdefault("JWT_SECRET", "test-secret")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fundledger.database import Base, get_db
from fundledger.main import app
from fundledger.middleware.auth import hash_password, token_for_user
from fundledger.models import (
    Account,
    Fund,
    JournalEntry,
    JournalLine,
    Organization,
    ReportingPeriod,
    Trade,
    User,
)

BASE_URL = "http://test"
PASSWORD = "secret123"
_PASSWORD_HASH = hash_password(PASSWORD)

PERIOD_DATE = date(2026, 3, 31)
PERIOD_MONTH = "2026-03"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def auth_headers(token: str) -> dict:
    """Return auth header dict for a given token."""
    return {"Authorization": f"Bearer {token}"}


def make_trade(fund_id, trade_id: str, trade_date: date, symbol_id: str = "AAPL",
               side: str = "buy", quantity: str = "10", price: str = "100",
               created_at: datetime | None = None) -> Trade:
    qty, px = Decimal(quantity), Decimal(price)
    return Trade(
        trade_id=trade_id,
        fund_id=fund_id,
        symbol_id=symbol_id,
        side=side,
        trade_date=trade_date,
        quantity=qty,
        price=px,
        amount=(qty * px).quantize(Decimal("0.01")),
        created_at=created_at or datetime(trade_date.year, trade_date.month, trade_date.day, 12, 0),
    )


def make_journal(fund_id, entry_date: date, *lines, memo: str = "seed") -> JournalEntry:
    """``lines`` are ``(account, debit, credit)`` tuples."""
    je = JournalEntry(fund_id=fund_id, entry_date=entry_date, memo=memo, status="posted")
    je.lines = [
        JournalLine(
            line_number=i,
            account_id=account.id,
            debit_amount=Decimal(str(debit)),
            credit_amount=Decimal(str(credit)),
        )
        for i, (account, debit, credit) in enumerate(lines, start=1)
    ]
    return je


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(session_factory):
    """Organization, two funds, a chart of accounts, March ledger activity and users."""
    async with session_factory() as session:
        org = Organization(code="ACME", name="Acme Capital")
        alpha = Fund(code="ALPHA", name="Alpha Fund", base_currency="USD", organization=org)
        beta = Fund(code="BETA", name="Beta Fund", base_currency="USD", organization=org)
        session.add_all([org, alpha, beta])
        await session.flush()

        def account(code, name, account_type, normal, category="general"):
            return Account(
                fund_id=alpha.id, gl_code=code, gl_name=name,
                account_type=account_type, normal_balance=normal, category=category,
            )

        accounts = {
            "1010": account("1010", "Operating Bank", "asset", "debit", "bank"),
            "1020": account("1020", "Prime Broker Cash", "asset", "debit", "broker"),
            "3000": account("3000", "Partners Capital", "equity", "credit"),
            "4000": account("4000", "Interest Income", "revenue", "credit"),
            "5000": account("5000", "Admin Fees", "expense", "debit"),
        }
        session.add_all(accounts.values())
        await session.flush()

        # Opening capital in February, March activity on both cash accounts
        session.add_all([
            make_journal(alpha.id, date(2026, 2, 15),
                         (accounts["1010"], 1000, 0), (accounts["3000"], 0, 1000)),
            make_journal(alpha.id, date(2026, 3, 5),
                         (accounts["1010"], 500, 0), (accounts["4000"], 0, 500)),
            make_journal(alpha.id, date(2026, 3, 20),
                         (accounts["5000"], 200, 0), (accounts["1010"], 0, 200)),
            make_journal(alpha.id, date(2026, 3, 10),
                         (accounts["1020"], 250, 0), (accounts["3000"], 0, 250)),
        ])
        session.add(ReportingPeriod(
            fund_id=alpha.id, period_name=PERIOD_MONTH,
            start_date=date(2026, 3, 1), end_date=PERIOD_DATE,
        ))

        users = {
            "admin": User(username="admin", password_hash=_PASSWORD_HASH,
                          display_name="Admin", role="system_admin"),
            "controller": User(username="controller", password_hash=_PASSWORD_HASH,
                               display_name="Controller", role="fund_controller"),
            "accountant": User(username="accountant", password_hash=_PASSWORD_HASH,
                               display_name="Accountant", role="fund_accountant", fund_id=alpha.id),
            "beta_accountant": User(username="beta_accountant", password_hash=_PASSWORD_HASH,
                                    display_name="Beta Accountant", role="fund_accountant",
                                    fund_id=beta.id),
            "viewer": User(username="viewer", password_hash=_PASSWORD_HASH,
                           display_name="Viewer", role="viewer"),
        }
        session.add_all(users.values())
        await session.commit()

        return {
            "fund_id": alpha.id,
            "beta_fund_id": beta.id,
            "accounts": {code: a.id for code, a in accounts.items()},
            "tokens": {name: token_for_user(u) for name, u in users.items()},
            "user_ids": {name: u.id for name, u in users.items()},
        }


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def fund_id(seed):
    return str(seed["fund_id"])


@pytest.fixture
def admin_headers(seed):
    return auth_headers(seed["tokens"]["admin"])


@pytest.fixture
def controller_headers(seed):
    return auth_headers(seed["tokens"]["controller"])


@pytest.fixture
def accountant_headers(seed):
    return auth_headers(seed["tokens"]["accountant"])


@pytest.fixture
def beta_headers(seed):
    return auth_headers(seed["tokens"]["beta_accountant"])


@pytest.fixture
def viewer_headers(seed):
    return auth_headers(seed["tokens"]["viewer"])
