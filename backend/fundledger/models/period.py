"""Reporting periods: a fund's dated accounting cycles (e.g. month-end)."""
from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Date, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from fundledger.database import Base
from fundledger.models.base import UUIDPrimaryKeyMixin


class ReportingPeriod(UUIDPrimaryKeyMixin, Base):
    """Identified by (fund, reporting date, period name); ``end_date`` is the reporting date."""
    __tablename__ = "reporting_periods"
    __table_args__ = (
        UniqueConstraint("fund_id", "end_date", "period_name", name="uq_reporting_period"),
    )

    fund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("funds.id"),
        nullable=False,
    )
    period_name: Mapped[str] = mapped_column(String(50), nullable=False)
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<ReportingPeriod {self.period_name!r} {self.end_date} status={self.status!r}>"
