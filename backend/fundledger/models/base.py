"""Base model utilities for FundLedger.

Provides a UUID primary-key mixin so every model automatically gets
a ``id`` column of type ``UUID`` generated on insert.
"""
from __future__ import annotations

import uuid

from sqlalchemy import Uuid
from sqlalchemy.orm import Mapped, mapped_column


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column named ``id``."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
