"""
Reference data: banks, brokers and exchanges.
"""
from sqlalchemy import select

from fundledger.models import AuditLog, Bank


async def _create(client, headers, kind, **payload):
    return await client.post(f"/api/v1/configuration/{kind}", headers=headers, json=payload)


class TestConfigurationEntities:

    async def test_110_create_and_list_banks(self, client, controller_headers, accountant_headers):
        r = await _create(client, controller_headers, "banks", code="JPM", name="JPMorgan Chase", start_date="2024-01-02")
        assert r.status_code == 201
        data = r.json()["data"]
        assert data["code"] == "JPM"
        assert data["start_date"] == "2024-01-02"
        assert "mic" not in data

        r = await client.get("/api/v1/configuration/banks", headers=accountant_headers)
        assert r.status_code == 200
        assert [b["name"] for b in r.json()["data"]] == ["JPMorgan Chase"]

    async def test_111_exchange_carries_mic(self, client, controller_headers):
        r = await _create(client, controller_headers, "exchanges", code="NYSE", name="New York Stock Exchange", mic="XNYS")
        assert r.status_code == 201
        assert r.json()["data"]["mic"] == "XNYS"

    async def test_112_field_of_another_entity_is_rejected(self, client, controller_headers):
        r = await _create(client, controller_headers, "exchanges", code="LSE", name="London", start_date="2024-01-01")
        assert r.status_code == 422
        assert "start_date" in r.json()["detail"]

    async def test_113_duplicate_code_conflicts(self, client, controller_headers):
        await _create(client, controller_headers, "brokers", code="GS", name="Goldman Sachs")
        r = await _create(client, controller_headers, "brokers", code="GS", name="Goldman")
        assert r.status_code == 409

    async def test_114_blank_name_is_rejected(self, client, controller_headers):
        r = await _create(client, controller_headers, "brokers", code="MS", name="   ")
        assert r.status_code == 422

    async def test_115_unknown_kind_is_not_found(self, client, controller_headers):
        r = await client.get("/api/v1/configuration/custodians", headers=controller_headers)
        assert r.status_code == 404

    async def test_116_update_and_deactivate(self, client, controller_headers):
        r = await _create(client, controller_headers, "brokers", code="UBS", name="UBS")
        broker_id = r.json()["data"]["id"]

        r = await client.put(
            f"/api/v1/configuration/brokers/{broker_id}",
            headers=controller_headers, json={"name": "UBS AG", "is_active": False},
        )
        assert r.status_code == 200
        assert r.json()["data"]["name"] == "UBS AG"

        r = await client.get("/api/v1/configuration/brokers", headers=controller_headers)
        assert r.json()["data"] == []
        r = await client.get(
            "/api/v1/configuration/brokers", params={"include_inactive": True}, headers=controller_headers,
        )
        assert [b["code"] for b in r.json()["data"]] == ["UBS"]

    async def test_117_delete_is_audited(self, client, controller_headers, session_factory):
        r = await _create(client, controller_headers, "banks", code="BNY", name="BNY Mellon")
        bank_id = r.json()["data"]["id"]

        r = await client.delete(f"/api/v1/configuration/banks/{bank_id}", headers=controller_headers)
        assert r.status_code == 200
        assert r.json()["data"]["code"] == "BNY"

        async with session_factory() as session:
            assert await session.scalar(select(Bank)) is None
            actions = set((await session.execute(select(AuditLog.action))).scalars().all())
        assert {"config.bank.create", "config.bank.delete"} <= actions

    async def test_118_delete_of_unknown_id_is_not_found(self, client, controller_headers):
        r = await client.delete(
            "/api/v1/configuration/banks/00000000-0000-0000-0000-000000000000", headers=controller_headers,
        )
        assert r.status_code == 404

    async def test_119_accountant_cannot_manage(self, client, accountant_headers):
        r = await _create(client, accountant_headers, "banks", code="C", name="Citi")
        assert r.status_code == 403

    async def test_120_viewer_cannot_list(self, client, viewer_headers):
        r = await client.get("/api/v1/configuration/banks", headers=viewer_headers)
        assert r.status_code == 403
