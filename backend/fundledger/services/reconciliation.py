"""Reconciliation state machine for bank/broker GL accounts.

Per (fund, GL code, period) an account moves through::

    open --initiate(statement)--> pending --reconcile--> reconciled
                                   |                        |
                                   +--cancel--> open <--reopen (period fully reconciled)

``reconcile`` requires ``closing_balance - statement_balance == 0`` to the
cent.  ``reopen`` requires every reconcilable account of the period to be
reconciled.  The server applies the same guards as the client.
"""
from __future__ import annotations

import dataclasses
import enum
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


class ReconciliationStatus(str, enum.Enum):
    OPEN = "open"
    PENDING = "pending"
    RECONCILED = "reconciled"


class ReconciliationError(ValueError):
    """Base class for rejected reconciliation actions."""


class MissingFieldError(ReconciliationError):
    pass


class BalanceMismatchError(ReconciliationError):
    def __init__(self, difference: Decimal) -> None:
        self.difference = difference
        super().__init__(
            f"Cannot reconcile: closing balance differs from statement balance by {difference}"
        )


class ReopenNotAllowedError(ReconciliationError):
    pass


class InvalidTransitionError(ReconciliationError):
    pass


def to_money(value: Any) -> Decimal:
    """Coerce a number or numeric string to a Decimal rounded to the cent."""
    if value is None:
        return Decimal("0.00")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ReconciliationError(f"Invalid monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ReconciliationError(f"Invalid monetary amount: {value!r}")
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ReconciliationError(f"Monetary amount out of range: {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class LedgerSummary:
    """Ledger movement of one GL account over one period."""
    gl_code: str
    opening_balance: Decimal
    total_debits: Decimal
    total_credits: Decimal

    @property
    def closing_balance(self) -> Decimal:
        return compute_closing_balance(self.opening_balance, self.total_debits, self.total_credits)


@dataclasses.dataclass(frozen=True)
class ReconciliationPreview:
    gl_code: str
    closing_balance: Decimal
    statement_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.closing_balance - self.statement_balance

    @property
    def is_balanced(self) -> bool:
        return self.difference == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "gl_code": self.gl_code,
            "closing_balance": float(self.closing_balance),
            "statement_balance": float(self.statement_balance),
            "difference": float(self.difference),
            "is_balanced": self.is_balanced,
        }


def compute_closing_balance(opening: Any, debits: Any, credits: Any) -> Decimal:
    """Opening balance plus debits minus credits."""
    return to_money(opening) + to_money(debits) - to_money(credits)


def compute_preview(summary: LedgerSummary, statement_balance: Any) -> ReconciliationPreview:
    return ReconciliationPreview(
        gl_code=summary.gl_code,
        closing_balance=summary.closing_balance,
        statement_balance=to_money(statement_balance),
    )


def require_fields(**fields: Any) -> None:
    """Reject a request before any ledger access when a key field is blank."""
    missing = [name for name, value in fields.items() if value is None or str(value).strip() == ""]
    if missing:
        raise MissingFieldError(f"Missing required field(s): {', '.join(missing)}")


def ensure_can_reconcile(preview: ReconciliationPreview) -> None:
    if not preview.is_balanced:
        raise BalanceMismatchError(preview.difference)


def is_all_reconciled(statuses: Iterable[str]) -> bool:
    """True when there is at least one account and every one is reconciled."""
    statuses = list(statuses)
    return bool(statuses) and all(s == ReconciliationStatus.RECONCILED.value for s in statuses)


def ensure_can_reopen(status: str, all_reconciled: bool) -> None:
    if status != ReconciliationStatus.RECONCILED.value:
        raise InvalidTransitionError(f"Only reconciled accounts can be reopened (status is '{status}')")
    if not all_reconciled:
        raise ReopenNotAllowedError(
            "Reopen is only allowed once every account of the period is reconciled"
        )


class ReconciliationWorkflow:
    """Local state of one GL account's reconciliation for one period."""

    def __init__(self, gl_code: str, status: ReconciliationStatus = ReconciliationStatus.OPEN) -> None:
        require_fields(gl_code=gl_code)
        self.gl_code = gl_code
        self.status = ReconciliationStatus(status)
        self.preview: ReconciliationPreview | None = None

    def _expect(self, *allowed: ReconciliationStatus) -> None:
        if self.status not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise InvalidTransitionError(
                f"Account {self.gl_code} is '{self.status.value}', expected one of: {names}"
            )

    def check_initiate(self) -> None:
        self._expect(ReconciliationStatus.OPEN, ReconciliationStatus.PENDING)

    def initiate(self, summary: LedgerSummary, statement_balance: Any) -> ReconciliationPreview:
        self.check_initiate()
        return self.begin(compute_preview(summary, statement_balance))

    def begin(self, preview: ReconciliationPreview) -> ReconciliationPreview:
        """Move to pending with a preview computed elsewhere, e.g. by the server."""
        self.check_initiate()
        if preview.gl_code != self.gl_code:
            raise InvalidTransitionError(f"Preview for {preview.gl_code} applied to account {self.gl_code}")
        self.preview = preview
        self.status = ReconciliationStatus.PENDING
        return preview

    def check_reconcile(self) -> ReconciliationPreview:
        self._expect(ReconciliationStatus.PENDING)
        if self.preview is None:
            raise InvalidTransitionError(f"Account {self.gl_code} has no statement balance to reconcile against")
        ensure_can_reconcile(self.preview)
        return self.preview

    def reconcile(self) -> None:
        self.check_reconcile()
        self.status = ReconciliationStatus.RECONCILED

    def cancel(self) -> None:
        self._expect(ReconciliationStatus.PENDING)
        self.preview = None
        self.status = ReconciliationStatus.OPEN

    def check_reopen(self, all_reconciled: bool) -> None:
        ensure_can_reopen(self.status.value, all_reconciled)

    def reopen(self, all_reconciled: bool) -> None:
        self.check_reopen(all_reconciled)
        self.preview = None
        self.status = ReconciliationStatus.OPEN
