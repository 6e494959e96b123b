"""Trade blotter model."""
from __future__ import annotations

import datetime
import decimal
import uuid

from sqlalchemy import Date, ForeignKey, Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from fundledger.database import Base
from fundledger.models.base import UUIDPrimaryKeyMixin


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class Trade(UUIDPrimaryKeyMixin, Base):
    """A booked trade, identified by ``trade_id`` and scoped to (fund, symbol)."""
    __tablename__ = "trades"
    __table_args__ = (
        Index("ix_trades_fund_symbol", "fund_id", "symbol_id"),
    )

    trade_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    fund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("funds.id"),
        nullable=False,
    )
    symbol_id: Mapped[str] = mapped_column(String(50), nullable=False)
    side: Mapped[str] = mapped_column(String(10), nullable=False)
    trade_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    quantity: Mapped[decimal.Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    price: Mapped[decimal.Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    broker: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        default=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<Trade {self.trade_id!r} {self.side} {self.quantity} {self.symbol_id}>"
