"""Reference data shared by all funds: banks, brokers and exchanges."""
from __future__ import annotations

import datetime

from sqlalchemy import Boolean, Date, String, func
from sqlalchemy.orm import Mapped, mapped_column

from fundledger.database import Base
from fundledger.models.base import UUIDPrimaryKeyMixin


class _ConfigEntity(UUIDPrimaryKeyMixin):
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime.datetime | None] = mapped_column(onupdate=func.now())

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.code!r} {self.name!r}>"


class Bank(_ConfigEntity, Base):
    """A bank the funds hold cash accounts with."""
    __tablename__ = "banks"

    start_date: Mapped[datetime.date | None] = mapped_column(Date)


class Broker(_ConfigEntity, Base):
    """A prime broker or executing broker."""
    __tablename__ = "brokers"

    start_date: Mapped[datetime.date | None] = mapped_column(Date)


class Exchange(_ConfigEntity, Base):
    __tablename__ = "exchanges"

    mic: Mapped[str | None] = mapped_column(String(10))
