"""
Auth, administration, funds, chart of accounts and manual journals.
"""
from conftest import PASSWORD, auth_headers


class TestAuth:

    async def test_121_login_returns_token_and_permissions(self, client, seed):
        r = await client.post("/api/v1/auth/login", json={"username": "accountant", "password": PASSWORD})
        assert r.status_code == 200
        body = r.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["scope"] == "fund"
        assert body["user"]["fund_id"] == str(seed["fund_id"])
        assert "trades.delete" in body["user"]["permissions"]
        assert "reconciliation.reopen" not in body["user"]["permissions"]

    async def test_122_bad_password_is_unauthorized(self, client, seed):
        r = await client.post("/api/v1/auth/login", json={"username": "accountant", "password": "nope"})
        assert r.status_code == 401

    async def test_123_me_uses_token(self, client, seed):
        r = await client.post("/api/v1/auth/login", json={"username": "controller", "password": PASSWORD})
        token = r.json()["access_token"]
        me = await client.get("/api/v1/auth/me", headers=auth_headers(token))
        assert me.status_code == 200
        assert me.json()["role"] == "fund_controller"
        assert me.json()["scope"] == "global"

    async def test_124_garbage_token_is_unauthorized(self, client, seed):
        r = await client.get("/api/v1/auth/me", headers=auth_headers("not-a-jwt"))
        assert r.status_code == 401

    async def test_125_health(self, client):
        r = await client.get("/api/health")
        assert r.json()["status"] == "healthy"


class TestAdmin:

    async def test_126_viewer_cannot_list_users(self, client, viewer_headers):
        r = await client.get("/api/v1/admin/users", headers=viewer_headers)
        assert r.status_code == 403

    async def test_127_create_user_and_reject_duplicate(self, client, admin_headers, fund_id):
        payload = {
            "username": "ops1", "password": "pw123456", "display_name": "Ops One",
            "role": "operations", "fund_id": fund_id,
        }
        r = await client.post("/api/v1/admin/users", headers=admin_headers, json=payload)
        assert r.status_code == 201
        r = await client.post("/api/v1/admin/users", headers=admin_headers, json=payload)
        assert r.status_code == 409

    async def test_128_unknown_role_is_rejected(self, client, admin_headers):
        r = await client.post(
            "/api/v1/admin/users", headers=admin_headers,
            json={"username": "x", "password": "pw123456", "display_name": "X", "role": "wizard"},
        )
        assert r.status_code == 422

    async def test_129_permission_override_grants_reopen(
        self, client, admin_headers, accountant_headers, seed
    ):
        user_id = seed["user_ids"]["accountant"]
        r = await client.post(
            f"/api/v1/admin/users/{user_id}/permissions", headers=admin_headers,
            json={"permission": "reconciliation.reopen", "granted": True, "reason": "month-end cover"},
        )
        assert r.status_code == 201
        override_id = r.json()["data"]["id"]

        me = await client.get("/api/v1/auth/me", headers=accountant_headers)
        assert "reconciliation.reopen" in me.json()["permissions"]

        r = await client.delete(
            f"/api/v1/admin/users/{user_id}/permissions/{override_id}", headers=admin_headers,
        )
        assert r.status_code == 200
        me = await client.get("/api/v1/auth/me", headers=accountant_headers)
        assert "reconciliation.reopen" not in me.json()["permissions"]

    async def test_130_roles_listing(self, client, admin_headers):
        r = await client.get("/api/v1/admin/roles", headers=admin_headers)
        roles = {row["role"]: row for row in r.json()["data"]}
        assert roles["auditor"]["scope"] == "global"
        assert roles["fund_accountant"]["scope"] == "fund"

    async def test_131_audit_log_records_mutations(self, client, admin_headers, fund_id):
        await client.put(f"/api/v1/funds/{fund_id}", headers=admin_headers, json={"name": "Alpha Fund II"})
        r = await client.get(
            "/api/v1/admin/audit-log", params={"action": "org.fund.update"}, headers=admin_headers,
        )
        assert r.status_code == 200
        assert r.json()["data"][0]["resource_id"] == fund_id


class TestFunds:

    async def test_132_fund_scoped_user_sees_only_own_fund(self, client, accountant_headers, fund_id):
        r = await client.get("/api/v1/funds", headers=accountant_headers)
        assert [f["fund_id"] for f in r.json()["data"]] == [fund_id]

    async def test_133_global_user_sees_all_funds(self, client, controller_headers):
        r = await client.get("/api/v1/funds", headers=controller_headers)
        assert {f["code"] for f in r.json()["data"]} == {"ALPHA", "BETA"}

    async def test_134_duplicate_fund_code_conflicts(self, client, admin_headers):
        r = await client.post("/api/v1/funds", headers=admin_headers, json={"code": "ALPHA", "name": "Again"})
        assert r.status_code == 409


class TestChartOfAccountsAndJournals:

    async def test_135_create_broker_account(self, client, accountant_headers, fund_id):
        r = await client.post(
            "/api/v1/chart-of-accounts", headers=accountant_headers,
            json={
                "fund_id": fund_id, "gl_code": "1030", "gl_name": "Second Broker",
                "account_type": "asset", "normal_balance": "debit", "category": "broker",
            },
        )
        assert r.status_code == 201
        assert r.json()["data"]["category"] == "broker"

    async def test_136_unknown_category_is_rejected(self, client, accountant_headers, fund_id):
        r = await client.post(
            "/api/v1/chart-of-accounts", headers=accountant_headers,
            json={
                "fund_id": fund_id, "gl_code": "1040", "gl_name": "Odd",
                "account_type": "asset", "normal_balance": "debit", "category": "custody",
            },
        )
        assert r.status_code == 422

    async def test_137_unbalanced_journal_is_rejected(self, client, accountant_headers, fund_id):
        r = await client.post(
            "/api/v1/journals", headers=accountant_headers,
            json={
                "fund_id": fund_id, "entry_date": "2026-03-25",
                "lines": [
                    {"gl_code": "1010", "debit_amount": "100"},
                    {"gl_code": "4000", "credit_amount": "90"},
                ],
            },
        )
        assert r.status_code == 422

    async def test_138_journal_moves_closing_balance_and_reversal_restores_it(
        self, client, accountant_headers, controller_headers, fund_id
    ):
        params = {"date": "2026-03-31", "month": "2026-03", "gl_code": "1010"}
        r = await client.post(
            "/api/v1/journals", headers=accountant_headers,
            json={
                "fund_id": fund_id, "entry_date": "2026-03-25", "memo": "bank interest",
                "lines": [
                    {"gl_code": "1010", "debit_amount": "40"},
                    {"gl_code": "4000", "credit_amount": "40"},
                ],
            },
        )
        assert r.status_code == 201
        je_id = r.json()["data"]["id"]

        summary = await client.get(
            f"/api/v1/reconciliation/{fund_id}/period-summary", params=params, headers=accountant_headers,
        )
        assert summary.json()["data"]["closing_balance"] == 1340.0

        r = await client.post(
            f"/api/v1/journals/{je_id}/reverse", params={"reversal_date": "2026-03-26"},
            headers=controller_headers,
        )
        assert r.status_code == 200

        summary = await client.get(
            f"/api/v1/reconciliation/{fund_id}/period-summary", params=params, headers=accountant_headers,
        )
        assert summary.json()["data"]["closing_balance"] == 1300.0
