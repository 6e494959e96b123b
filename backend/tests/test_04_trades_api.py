"""
Trade blotter API: listing order, single and bulk deletion.

Fund ALPHA holds AAPL trades A4 (newest) .. A1 (oldest) and MSFT trades M2, M1.
"""
from datetime import date

import pytest_asyncio
from sqlalchemy import select

from conftest import make_trade
from fundledger.models import AuditLog, Trade


@pytest_asyncio.fixture
async def trades(seed, session_factory):
    fund_id = seed["fund_id"]
    async with session_factory() as session:
        session.add_all([
            make_trade(fund_id, "A1", date(2026, 3, 1)),
            make_trade(fund_id, "A2", date(2026, 3, 2)),
            make_trade(fund_id, "A3", date(2026, 3, 3)),
            make_trade(fund_id, "A4", date(2026, 3, 4)),
            make_trade(fund_id, "M1", date(2026, 3, 1), symbol_id="MSFT"),
            make_trade(fund_id, "M2", date(2026, 3, 5), symbol_id="MSFT"),
        ])
        await session.commit()


async def _remaining(session_factory) -> set[str]:
    async with session_factory() as session:
        result = await session.execute(select(Trade.trade_id))
        return set(result.scalars().all())


class TestListTrades:

    async def test_57_trades_listed_newest_first(self, client, fund_id, accountant_headers, trades):
        r = await client.get(f"/api/v1/trade/fund/{fund_id}?symbol_id=AAPL", headers=accountant_headers)
        assert r.status_code == 200
        assert [t["trade_id"] for t in r.json()["data"]] == ["A4", "A3", "A2", "A1"]

    async def test_58_other_fund_is_forbidden(self, client, fund_id, beta_headers, trades):
        r = await client.get(f"/api/v1/trade/fund/{fund_id}", headers=beta_headers)
        assert r.status_code == 403

    async def test_59_create_trade_computes_amount(self, client, fund_id, accountant_headers, seed):
        r = await client.post(
            "/api/v1/trade",
            headers=accountant_headers,
            json={
                "fund_id": fund_id, "symbol_id": "NVDA", "side": "buy",
                "trade_date": "2026-03-10", "quantity": "3", "price": "33.335",
            },
        )
        assert r.status_code == 201
        data = r.json()["data"]
        assert data["trade_id"].startswith("TRD-")
        assert data["amount"] == 100.01


class TestBulkDelete:

    async def test_60_newest_prefixes_across_symbols_are_deleted(
        self, client, accountant_headers, trades, session_factory
    ):
        r = await client.request(
            "DELETE", "/api/v1/trade/bulk/delete",
            headers=accountant_headers, json={"tradeIds": ["A3", "M2", "A4"]},
        )
        assert r.status_code == 200
        body = r.json()
        assert body["success"] is True
        assert body["data"]["deleted_count"] == 3
        assert set(body["data"]["deleted"]) == {"A3", "A4", "M2"}
        assert await _remaining(session_factory) == {"A1", "A2", "M1"}

    async def test_61_requested_count_is_raw_request_size(self, client, accountant_headers, trades):
        r = await client.request(
            "DELETE", "/api/v1/trade/bulk/delete",
            headers=accountant_headers, json={"tradeIds": ["A4", "A4", "A3"]},
        )
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["requested_count"] == 3
        assert data["deleted_count"] == 2
        assert data["deleted"] == ["A4", "A3"]

    async def test_62_gap_blocks_the_whole_batch(self, client, accountant_headers, trades, session_factory):
        r = await client.request(
            "DELETE", "/api/v1/trade/bulk/delete",
            headers=accountant_headers, json={"trade_ids": ["A4", "A2", "M2"]},
        )
        assert r.status_code == 400
        body = r.json()
        assert body["success"] is False
        assert len(body["issues"]) == 1
        issue = body["issues"][0]
        assert issue["symbol_id"] == "AAPL"
        assert issue["message"] == "Missing trade between A4 and A2. Selection must be continuous."
        assert issue["total_trades"] == 4
        assert issue["selected"] == 2
        # nothing deleted, not even the valid MSFT group
        assert await _remaining(session_factory) == {"A1", "A2", "A3", "A4", "M1", "M2"}

    async def test_63_selection_without_latest_is_rejected(self, client, accountant_headers, trades):
        r = await client.request(
            "DELETE", "/api/v1/trade/bulk/delete",
            headers=accountant_headers, json={"tradeIds": ["A3", "A2"]},
        )
        assert r.status_code == 400
        assert "Latest trade is not selected" in r.json()["issues"][0]["message"]

    async def test_64_empty_list_is_bad_request(self, client, accountant_headers, trades):
        r = await client.request(
            "DELETE", "/api/v1/trade/bulk/delete", headers=accountant_headers, json={"tradeIds": []},
        )
        assert r.status_code == 400

    async def test_65_unknown_ids_are_not_found(self, client, accountant_headers, trades):
        r = await client.request(
            "DELETE", "/api/v1/trade/bulk/delete", headers=accountant_headers, json={"tradeIds": ["NOPE"]},
        )
        assert r.status_code == 404

    async def test_66_delete_is_audited(self, client, accountant_headers, trades, session_factory):
        await client.request(
            "DELETE", "/api/v1/trade/bulk/delete", headers=accountant_headers, json={"tradeIds": ["A4"]},
        )
        async with session_factory() as session:
            result = await session.execute(select(AuditLog).where(AuditLog.action == "trades.trade.delete"))
            entry = result.scalar_one()
        assert entry.username == "accountant"
        assert entry.details["deleted_count"] == 1

    async def test_67_viewer_cannot_delete(self, client, viewer_headers, trades):
        r = await client.request(
            "DELETE", "/api/v1/trade/bulk/delete", headers=viewer_headers, json={"tradeIds": ["A4"]},
        )
        assert r.status_code == 403

    async def test_68_other_fund_user_cannot_delete(self, client, beta_headers, trades):
        r = await client.request(
            "DELETE", "/api/v1/trade/bulk/delete", headers=beta_headers, json={"tradeIds": ["A4"]},
        )
        assert r.status_code == 403


class TestSingleDelete:

    async def test_69_latest_trade_can_be_deleted(self, client, accountant_headers, trades, session_factory):
        r = await client.delete("/api/v1/trade/A4", headers=accountant_headers)
        assert r.status_code == 200
        assert "A4" not in await _remaining(session_factory)

    async def test_70_older_trade_cannot_be_deleted(self, client, accountant_headers, trades):
        r = await client.delete("/api/v1/trade/A2", headers=accountant_headers)
        assert r.status_code == 400
        assert r.json()["issues"][0]["symbol_id"] == "AAPL"
