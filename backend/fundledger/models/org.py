"""Organization model: the legal entity that owns one or more funds."""
from __future__ import annotations

import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fundledger.database import Base
from fundledger.models.base import UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from fundledger.models.fund import Fund


class Organization(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "organizations"

    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    # ------ relationships ------
    funds: Mapped[list[Fund]] = relationship(
        "Fund",
        back_populates="organization",
    )

    def __repr__(self) -> str:
        return f"<Organization {self.code!r} {self.name!r}>"
