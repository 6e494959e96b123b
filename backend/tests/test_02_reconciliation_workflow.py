"""
Unit tests for the reconciliation state machine and money helpers.
"""
from decimal import Decimal

import pytest

from fundledger.services.reconciliation import (
    BalanceMismatchError,
    InvalidTransitionError,
    LedgerSummary,
    MissingFieldError,
    ReconciliationError,
    ReconciliationPreview,
    ReconciliationStatus,
    ReconciliationWorkflow,
    ReopenNotAllowedError,
    compute_closing_balance,
    is_all_reconciled,
    require_fields,
    to_money,
)


def summary(opening="1000", debits="500", credits="200", gl_code="1010"):
    return LedgerSummary(gl_code, Decimal(opening), Decimal(debits), Decimal(credits))


class TestMoney:

    def test_17_to_money_rounds_half_up_to_cents(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(0.1 + 0.2) == Decimal("0.30")

    def test_18_to_money_rejects_garbage(self):
        with pytest.raises(ReconciliationError):
            to_money("ten dollars")

    @pytest.mark.parametrize("value", ["NaN", "-nan", "inf", "-Infinity", Decimal("NaN")])
    def test_19_to_money_rejects_non_finite(self, value):
        with pytest.raises(ReconciliationError):
            to_money(value)

    def test_20_to_money_rejects_amount_beyond_precision(self):
        with pytest.raises(ReconciliationError):
            to_money("1E+40")

    def test_21_closing_balance_is_opening_plus_debits_minus_credits(self):
        assert compute_closing_balance("1000", "500", "200") == Decimal("1300.00")

    def test_22_negative_closing_balance(self):
        assert compute_closing_balance("0", "100", "350.25") == Decimal("-250.25")


class TestWorkflow:

    def test_23_initiate_moves_to_pending_with_difference(self):
        wf = ReconciliationWorkflow("1010")
        preview = wf.initiate(summary(), "1299.50")
        assert wf.status is ReconciliationStatus.PENDING
        assert preview.closing_balance == Decimal("1300.00")
        assert preview.difference == Decimal("0.50")
        assert not preview.is_balanced

    def test_24_reconcile_requires_zero_difference(self):
        wf = ReconciliationWorkflow("1010")
        wf.initiate(summary(), "1299.99")
        with pytest.raises(BalanceMismatchError) as exc:
            wf.reconcile()
        assert exc.value.difference == Decimal("0.01")
        assert wf.status is ReconciliationStatus.PENDING

    def test_25_reconcile_when_balanced(self):
        wf = ReconciliationWorkflow("1010")
        wf.initiate(summary(), "1300")
        wf.reconcile()
        assert wf.status is ReconciliationStatus.RECONCILED

    def test_26_zero_balance_account_reconciles_against_zero(self):
        wf = ReconciliationWorkflow("1020")
        wf.initiate(summary("0", "0", "0", "1020"), 0)
        wf.reconcile()
        assert wf.status is ReconciliationStatus.RECONCILED

    def test_27_negative_balance_reconciles(self):
        wf = ReconciliationWorkflow("1010")
        wf.initiate(summary("0", "100", "300"), "-200.00")
        wf.reconcile()
        assert wf.status is ReconciliationStatus.RECONCILED

    def test_28_initiate_can_be_repeated_while_pending(self):
        wf = ReconciliationWorkflow("1010")
        wf.initiate(summary(), "1")
        preview = wf.initiate(summary(), "1300")
        assert preview.is_balanced

    def test_29_cancel_returns_to_open_and_drops_preview(self):
        wf = ReconciliationWorkflow("1010")
        wf.initiate(summary(), "1300")
        wf.cancel()
        assert wf.status is ReconciliationStatus.OPEN
        assert wf.preview is None

    def test_30_reconcile_from_open_is_invalid(self):
        with pytest.raises(InvalidTransitionError):
            ReconciliationWorkflow("1010").reconcile()

    def test_31_cancel_from_open_is_invalid(self):
        with pytest.raises(InvalidTransitionError):
            ReconciliationWorkflow("1010").cancel()

    def test_32_initiate_on_reconciled_account_is_invalid(self):
        wf = ReconciliationWorkflow("1010", ReconciliationStatus.RECONCILED)
        with pytest.raises(InvalidTransitionError):
            wf.initiate(summary(), "1300")

    def test_33_reopen_requires_period_fully_reconciled(self):
        wf = ReconciliationWorkflow("1010", ReconciliationStatus.RECONCILED)
        with pytest.raises(ReopenNotAllowedError):
            wf.reopen(all_reconciled=False)
        assert wf.status is ReconciliationStatus.RECONCILED

    def test_34_reopen_when_period_fully_reconciled(self):
        wf = ReconciliationWorkflow("1010", ReconciliationStatus.RECONCILED)
        wf.reopen(all_reconciled=True)
        assert wf.status is ReconciliationStatus.OPEN

    def test_35_reopen_of_open_account_is_invalid(self):
        with pytest.raises(InvalidTransitionError):
            ReconciliationWorkflow("1010").reopen(all_reconciled=True)

    def test_36_non_finite_statement_balance_leaves_account_open(self):
        wf = ReconciliationWorkflow("1010")
        with pytest.raises(ReconciliationError):
            wf.initiate(summary(), "NaN")
        assert wf.status is ReconciliationStatus.OPEN
        assert wf.preview is None

    def test_37_pending_without_preview_cannot_reconcile(self):
        wf = ReconciliationWorkflow("1010", ReconciliationStatus.PENDING)
        with pytest.raises(InvalidTransitionError):
            wf.reconcile()
        assert wf.status is ReconciliationStatus.PENDING

    def test_38_begin_with_preview_from_elsewhere(self):
        wf = ReconciliationWorkflow("1010")
        wf.begin(ReconciliationPreview("1010", Decimal("1300.00"), Decimal("1300.00")))
        wf.reconcile()
        assert wf.status is ReconciliationStatus.RECONCILED

    def test_39_begin_with_other_accounts_preview_is_invalid(self):
        wf = ReconciliationWorkflow("1010")
        with pytest.raises(InvalidTransitionError):
            wf.begin(ReconciliationPreview("1020", Decimal("0"), Decimal("0")))
        assert wf.status is ReconciliationStatus.OPEN

    def test_40_missing_gl_code_is_rejected(self):
        with pytest.raises(MissingFieldError):
            ReconciliationWorkflow("")


class TestGuards:

    def test_41_require_fields_lists_missing_names(self):
        with pytest.raises(MissingFieldError, match="gl_code, pricing_month"):
            require_fields(gl_code=None, pricing_date="2026-03-31", pricing_month="  ")

    def test_42_all_reconciled_needs_at_least_one_account(self):
        assert not is_all_reconciled([])

    def test_43_all_reconciled_requires_every_account(self):
        assert is_all_reconciled(["reconciled", "reconciled"])
        assert not is_all_reconciled(["reconciled", "pending"])
        assert not is_all_reconciled(["reconciled", "open"])
