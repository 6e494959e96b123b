"""General Ledger models: chart of accounts, journal entries, and journal lines."""
from __future__ import annotations

import datetime
import decimal
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fundledger.database import Base
from fundledger.models.base import UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from fundledger.models.fund import Fund
    from fundledger.models.user import User

ACCOUNT_TYPES = ("asset", "liability", "equity", "revenue", "expense")

# Accounts in these categories are matched against external statements
RECONCILABLE_CATEGORIES = ("bank", "broker")


class Account(UUIDPrimaryKeyMixin, Base):
    """Chart of Accounts entry, unique per (fund, gl_code)."""
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("fund_id", "gl_code", name="uq_accounts_fund_gl_code"),
    )

    fund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("funds.id"),
        nullable=False,
    )
    gl_code: Mapped[str] = mapped_column(String(20), nullable=False)
    gl_name: Mapped[str] = mapped_column(String(200), nullable=False)
    account_type: Mapped[str] = mapped_column(String(50), nullable=False)
    normal_balance: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="general",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    # ------ relationships ------
    fund: Mapped[Fund] = relationship(
        "Fund",
        back_populates="accounts",
    )
    journal_lines: Mapped[list[JournalLine]] = relationship(
        "JournalLine",
        back_populates="account",
    )

    @property
    def is_reconcilable(self) -> bool:
        return self.category in RECONCILABLE_CATEGORIES

    def __repr__(self) -> str:
        return f"<Account {self.gl_code!r} {self.gl_name!r}>"


class JournalEntry(UUIDPrimaryKeyMixin, Base):
    """A complete journal entry (header) containing one or more lines."""
    __tablename__ = "journal_entries"

    fund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("funds.id"),
        nullable=False,
    )
    entry_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    memo: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="manual",
    )
    source_reference: Mapped[str | None] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="posted",
    )
    reversed_by_je_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id"),
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    # ------ relationships ------
    lines: Mapped[list[JournalLine]] = relationship(
        "JournalLine",
        back_populates="journal_entry",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    created_by_user: Mapped[User | None] = relationship(
        "User",
        foreign_keys=[created_by],
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_date} status={self.status!r}>"


class JournalLine(UUIDPrimaryKeyMixin, Base):
    """Individual debit or credit line within a journal entry."""
    __tablename__ = "journal_lines"

    journal_entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("accounts.id"),
        nullable=False,
    )
    debit_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=decimal.Decimal("0")
    )
    credit_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=decimal.Decimal("0")
    )
    memo: Mapped[str | None] = mapped_column(Text)

    # ------ relationships ------
    journal_entry: Mapped[JournalEntry] = relationship(
        "JournalEntry",
        back_populates="lines",
    )
    account: Mapped[Account] = relationship(
        "Account",
        back_populates="journal_lines",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<JournalLine #{self.line_number} "
            f"debit={self.debit_amount} credit={self.credit_amount}>"
        )
