"""Reconciliation records: one per (fund, GL code, pricing date, pricing month)."""
from __future__ import annotations

import datetime
import decimal
import uuid

from sqlalchemy import Date, ForeignKey, Integer, Numeric, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from fundledger.database import Base
from fundledger.models.base import UUIDPrimaryKeyMixin


class ReconciliationRecord(UUIDPrimaryKeyMixin, Base):
    """Status of a bank/broker GL account against its external statement.

    Never deleted: reopen flips ``status`` back to ``open``.  ``version`` is an
    optimistic-lock counter so two concurrent reconcile/reopen calls on the same
    record cannot both win.
    """
    __tablename__ = "reconciliation_records"
    __table_args__ = (
        UniqueConstraint(
            "fund_id", "gl_code", "pricing_date", "pricing_month",
            name="uq_reconciliation_record",
        ),
    )

    fund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("funds.id"),
        nullable=False,
    )
    gl_code: Mapped[str] = mapped_column(String(20), nullable=False)
    pricing_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    pricing_month: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    statement_balance: Mapped[decimal.Decimal | None] = mapped_column(Numeric(18, 2))
    closing_balance: Mapped[decimal.Decimal | None] = mapped_column(Numeric(18, 2))
    difference: Mapped[decimal.Decimal | None] = mapped_column(Numeric(18, 2))
    reconciled_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
    )
    reconciled_at: Mapped[datetime.datetime | None] = mapped_column()
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ReconciliationRecord {self.gl_code!r} {self.pricing_date} "
            f"status={self.status!r}>"
        )
