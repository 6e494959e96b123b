"""
Reconciliation API for fund ALPHA, period 2026-03 (ending 2026-03-31).

Ledger: bank 1010 opens at 1000.00, +500 / -200 in March, closes at 1300.00.
Broker 1020 opens at 0 and closes at 250.00.
"""
import pytest
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from conftest import PERIOD_DATE, PERIOD_MONTH
from fundledger.models import AuditLog, ReconciliationRecord
from fundledger.services.reconciliation_service import ReconciliationService

PERIOD = {"date": str(PERIOD_DATE), "month": PERIOD_MONTH}


def body(fund_id, gl_code, statement_balance=None):
    data = {
        "fund_id": fund_id,
        "gl_code": gl_code,
        "pricing_date": str(PERIOD_DATE),
        "pricing_month": PERIOD_MONTH,
    }
    if statement_balance is not None:
        data["statement_balance"] = statement_balance
    return data


async def reconcile(client, headers, fund_id, gl_code, statement_balance):
    return await client.post(
        "/api/v1/reconciliation/reconciliation/reconcile",
        headers=headers, json=body(fund_id, gl_code, statement_balance),
    )


class TestReadSide:

    async def test_71_status_starts_open(self, client, fund_id, accountant_headers):
        r = await client.get(f"/api/v1/reconciliation/{fund_id}/status", params=PERIOD, headers=accountant_headers)
        assert r.status_code == 200
        data = r.json()["data"]
        assert {i["gl_code"]: i["status"] for i in data["items"]} == {"1010": "open", "1020": "open"}
        assert data["all_reconciled"] is False

    async def test_72_bank_gl_lists_only_reconcilable_accounts(self, client, fund_id, accountant_headers):
        r = await client.get(f"/api/v1/reconciliation/{fund_id}/bank-gl", params=PERIOD, headers=accountant_headers)
        assert r.status_code == 200
        rows = {row["gl_code"]: row for row in r.json()["data"]["rows"]}
        assert set(rows) == {"1010", "1020"}
        assert rows["1010"]["opening_balance"] == 1000.0
        assert rows["1010"]["closing_balance"] == 1300.0
        assert rows["1020"]["closing_balance"] == 250.0

    async def test_73_period_summary(self, client, fund_id, accountant_headers):
        r = await client.get(
            f"/api/v1/reconciliation/{fund_id}/period-summary",
            params={**PERIOD, "gl_code": "1010"}, headers=accountant_headers,
        )
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["opening_balance"] == 1000.0
        assert data["total_debits"] == 500.0
        assert data["total_credits"] == 200.0
        assert data["closing_balance"] == 1300.0
        assert len(data["rows"]) == 2

    async def test_74_period_summary_without_gl_code_is_rejected(self, client, fund_id, accountant_headers):
        r = await client.get(
            f"/api/v1/reconciliation/{fund_id}/period-summary", params=PERIOD, headers=accountant_headers,
        )
        assert r.status_code == 422

    async def test_75_other_fund_is_forbidden(self, client, fund_id, beta_headers):
        r = await client.get(f"/api/v1/reconciliation/{fund_id}/status", params=PERIOD, headers=beta_headers)
        assert r.status_code == 403


class TestInitiateAndReconcile:

    async def test_76_initiate_returns_difference(self, client, fund_id, accountant_headers):
        r = await client.post(
            "/api/v1/reconciliation/reconciliation/initiate",
            headers=accountant_headers, json=body(fund_id, "1010", "1299.00"),
        )
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["closing_balance"] == 1300.0
        assert data["difference"] == 1.0
        assert data["is_balanced"] is False

    async def test_77_mismatch_is_rejected_and_nothing_changes(
        self, client, fund_id, accountant_headers, session_factory
    ):
        r = await reconcile(client, accountant_headers, fund_id, "1010", "1299.99")
        assert r.status_code == 422
        assert r.json()["detail"]["difference"] == 0.01

        async with session_factory() as session:
            record = await session.scalar(select(ReconciliationRecord))
        assert record is None or record.status == "open"

    async def test_78_balanced_reconcile_persists_and_audits(
        self, client, fund_id, accountant_headers, seed, session_factory
    ):
        r = await reconcile(client, accountant_headers, fund_id, "1010", "1300.00")
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["status"] == "reconciled"
        assert data["statement_balance"] == 1300.0
        assert data["difference"] == 0.0

        async with session_factory() as session:
            record = await session.scalar(
                select(ReconciliationRecord).where(ReconciliationRecord.gl_code == "1010")
            )
            audit = await session.scalar(
                select(AuditLog).where(AuditLog.action == "reconciliation.account.reconcile")
            )
        assert record.status == "reconciled"
        assert record.reconciled_by == seed["user_ids"]["accountant"]
        assert audit is not None

    async def test_79_reconciling_twice_conflicts(self, client, fund_id, accountant_headers):
        await reconcile(client, accountant_headers, fund_id, "1010", "1300")
        r = await reconcile(client, accountant_headers, fund_id, "1010", "1300")
        assert r.status_code == 409

    async def test_80_missing_gl_code_is_rejected(self, client, fund_id, accountant_headers):
        r = await reconcile(client, accountant_headers, fund_id, None, "1300")
        assert r.status_code == 422

    async def test_81_missing_statement_balance_is_rejected(self, client, fund_id, accountant_headers):
        r = await reconcile(client, accountant_headers, fund_id, "1010", None)
        assert r.status_code == 422

    async def test_82_general_account_is_not_reconcilable(self, client, fund_id, accountant_headers):
        r = await reconcile(client, accountant_headers, fund_id, "3000", "0")
        assert r.status_code == 422

    async def test_83_unknown_account_is_not_found(self, client, fund_id, accountant_headers):
        r = await reconcile(client, accountant_headers, fund_id, "9999", "0")
        assert r.status_code == 404

    async def test_84_viewer_cannot_reconcile(self, client, fund_id, viewer_headers):
        r = await reconcile(client, viewer_headers, fund_id, "1010", "1300")
        assert r.status_code == 403


    async def test_85_non_finite_statement_balance_is_rejected(self, client, fund_id, accountant_headers):
        for amount in ("NaN", "Infinity"):
            r = await reconcile(client, accountant_headers, fund_id, "1010", amount)
            assert r.status_code == 422


class TestConcurrentReconcile:
    """Two writers holding the same record version: the second one to flush loses."""

    async def _initiate(self, client, headers, fund_id):
        r = await client.post(
            "/api/v1/reconciliation/reconciliation/initiate",
            headers=headers, json=body(fund_id, "1010", "1300.00"),
        )
        assert r.status_code == 200

    async def test_86_stale_record_raises_on_flush(
        self, client, fund_id, accountant_headers, seed, session_factory
    ):
        await self._initiate(client, accountant_headers, fund_id)

        async with session_factory() as s1, session_factory() as s2:
            first, second = ReconciliationService(s1), ReconciliationService(s2)
            stale = (await second.records(seed["fund_id"], PERIOD_DATE, PERIOD_MONTH))["1010"]
            assert stale.version == 1

            await first.reconcile(seed["fund_id"], "1010", PERIOD_DATE, PERIOD_MONTH, "1300.00", None)
            await s1.commit()

            with pytest.raises(StaleDataError):
                await second.reconcile(seed["fund_id"], "1010", PERIOD_DATE, PERIOD_MONTH, "1300.00", None)
            await s2.rollback()

        async with session_factory() as session:
            record = await session.scalar(
                select(ReconciliationRecord).where(ReconciliationRecord.gl_code == "1010")
            )
        assert record.status == "reconciled"
        assert record.version == 2

    async def test_87_losing_request_gets_conflict(
        self, client, fund_id, accountant_headers, session_factory, monkeypatch
    ):
        await self._initiate(client, accountant_headers, fund_id)
        original_preview = ReconciliationService._preview

        async def preview_after_concurrent_write(self, account, *args):
            # another user reconciles the same record after this request loaded it
            async with session_factory() as other:
                record = await other.scalar(
                    select(ReconciliationRecord).where(ReconciliationRecord.gl_code == account.gl_code)
                )
                record.status = "reconciled"
                await other.commit()
            return await original_preview(self, account, *args)

        monkeypatch.setattr(ReconciliationService, "_preview", preview_after_concurrent_write)

        r = await reconcile(client, accountant_headers, fund_id, "1010", "1300.00")
        assert r.status_code == 409
        assert "changed by another user" in r.json()["detail"]

        async with session_factory() as session:
            audit = await session.scalar(
                select(AuditLog).where(AuditLog.action == "reconciliation.account.reconcile")
            )
        assert audit is None


class TestReopen:

    async def _reopen(self, client, headers, fund_id, gl_code="1010"):
        return await client.post(
            "/api/v1/reconciliation/reconciliation/reopen",
            headers=headers, json=body(fund_id, gl_code),
        )

    async def test_88_reopen_blocked_until_period_fully_reconciled(
        self, client, fund_id, accountant_headers, controller_headers
    ):
        await reconcile(client, accountant_headers, fund_id, "1010", "1300")
        r = await self._reopen(client, controller_headers, fund_id)
        assert r.status_code == 409

    async def test_89_reopen_after_full_reconciliation(
        self, client, fund_id, accountant_headers, controller_headers, session_factory
    ):
        await reconcile(client, accountant_headers, fund_id, "1010", "1300")
        await reconcile(client, accountant_headers, fund_id, "1020", "250")

        status = await client.get(
            f"/api/v1/reconciliation/{fund_id}/status", params=PERIOD, headers=accountant_headers,
        )
        assert status.json()["data"]["all_reconciled"] is True

        r = await self._reopen(client, controller_headers, fund_id)
        assert r.status_code == 200
        assert r.json()["data"]["status"] == "open"

        status = await client.get(
            f"/api/v1/reconciliation/{fund_id}/status", params=PERIOD, headers=accountant_headers,
        )
        items = {i["gl_code"]: i["status"] for i in status.json()["data"]["items"]}
        assert items == {"1010": "open", "1020": "reconciled"}

        async with session_factory() as session:
            audit = await session.scalar(
                select(AuditLog).where(AuditLog.action == "reconciliation.account.reopen")
            )
        assert audit.username == "controller"

    async def test_90_reopen_of_open_account_conflicts(self, client, fund_id, controller_headers):
        r = await self._reopen(client, controller_headers, fund_id)
        assert r.status_code == 409

    async def test_91_accountant_cannot_reopen(self, client, fund_id, accountant_headers):
        r = await self._reopen(client, accountant_headers, fund_id)
        assert r.status_code == 403


class TestReportingPeriods:

    async def test_92_periods_carry_reconciliation_status(self, client, fund_id, accountant_headers):
        r = await client.get(f"/api/v1/pricing/{fund_id}/reporting-periods", headers=accountant_headers)
        assert r.status_code == 200
        body_ = r.json()
        assert body_["count"] == 1
        assert body_["rows"][0]["reconciliation_status"] == "open"

        await reconcile(client, accountant_headers, fund_id, "1010", "1300")
        await reconcile(client, accountant_headers, fund_id, "1020", "250")

        r = await client.get(f"/api/v1/pricing/{fund_id}/reporting-periods", headers=accountant_headers)
        assert r.json()["rows"][0]["reconciliation_status"] == "reconciled"
