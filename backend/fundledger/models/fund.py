"""Fund model: the accounting entity every ledger, trade and report is scoped to."""
from __future__ import annotations

import datetime
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fundledger.database import Base
from fundledger.models.base import UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from fundledger.models.gl import Account
    from fundledger.models.org import Organization


class Fund(UUIDPrimaryKeyMixin, Base):
    """An investment fund with its own chart of accounts and trade book."""
    __tablename__ = "funds"

    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("organizations.id"),
    )
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    # ------ relationships ------
    organization: Mapped[Organization | None] = relationship(
        "Organization",
        back_populates="funds",
        lazy="selectin",
    )
    accounts: Mapped[list[Account]] = relationship(
        "Account",
        back_populates="fund",
    )

    def __repr__(self) -> str:
        return f"<Fund {self.code!r} {self.name!r}>"
