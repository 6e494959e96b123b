"""Async HTTP client for the FundLedger API.

Auth travels in an explicit :class:`ApiContext` handed to the client instead
of being read from ambient state at each call site.
"""
from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any

import httpx

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ApiContext:
    base_url: str
    token: str | None = None
    fund_id: uuid.UUID | str | None = None

    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def with_token(self, token: str) -> ApiContext:
        return dataclasses.replace(self, token=token)

    def with_fund(self, fund_id: uuid.UUID | str) -> ApiContext:
        return dataclasses.replace(self, fund_id=fund_id)


class ApiError(Exception):
    """A failed API call.  ``status_code`` is ``None`` for network failures."""

    def __init__(self, status_code: int | None, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload

    @property
    def is_network(self) -> bool:
        return self.status_code is None


def _error_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        if payload.get("message"):
            return str(payload["message"])
        detail = payload.get("detail")
        if isinstance(detail, dict) and detail.get("message"):
            return str(detail["message"])
        if isinstance(detail, list) and detail:
            return "; ".join(str(d.get("msg", d)) if isinstance(d, dict) else str(d) for d in detail)
        if detail:
            return str(detail)
    return fallback


def _period_params(pricing_date: date | str, pricing_month: str) -> dict[str, str]:
    return {"date": str(pricing_date), "month": pricing_month}


class FundLedgerClient:
    def __init__(
        self,
        context: ApiContext,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.context = context
        self._client = httpx.AsyncClient(
            base_url=context.base_url,
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> FundLedgerClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _fund(self, fund_id: uuid.UUID | str | None) -> str:
        fund_id = fund_id or self.context.fund_id
        if not fund_id:
            raise ValueError("No fund selected")
        return str(fund_id)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json: Any = None,
    ) -> Any:
        try:
            resp = await self._client.request(
                method, path, params=params, json=json, headers=self.context.headers(),
            )
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise ApiError(None, f"Network error: {e}") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        if resp.status_code >= 400:
            message = _error_message(payload, f"HTTP {resp.status_code}")
            raise ApiError(resp.status_code, message, payload)
        return payload

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> dict:
        """Log in and bind the returned token (and the user's fund, if any) to the context."""
        data = await self._request(
            "POST", "/api/v1/auth/login", json={"username": username, "password": password},
        )
        context = self.context.with_token(data["access_token"])
        fund_id = data.get("user", {}).get("fund_id")
        if fund_id and not context.fund_id:
            context = context.with_fund(fund_id)
        self.context = context
        return data["user"]

    async def me(self) -> dict:
        return await self._request("GET", "/api/v1/auth/me")

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    async def list_trades(self, fund_id=None, symbol_id: str | None = None) -> list[dict]:
        params = {"symbol_id": symbol_id} if symbol_id else None
        payload = await self._request("GET", f"/api/v1/trade/fund/{self._fund(fund_id)}", params=params)
        return payload["data"]

    async def delete_trade(self, trade_id: str) -> dict:
        return await self._request("DELETE", f"/api/v1/trade/{trade_id}")

    async def delete_trades(self, trade_ids: list[str]) -> dict:
        return await self._request("DELETE", "/api/v1/trade/bulk/delete", json={"tradeIds": trade_ids})

    # ------------------------------------------------------------------
    # Periods & reconciliation
    # ------------------------------------------------------------------

    async def reporting_periods(self, fund_id=None, limit: int | None = None) -> dict:
        params = {"limit": limit} if limit else None
        return await self._request(
            "GET", f"/api/v1/pricing/{self._fund(fund_id)}/reporting-periods", params=params,
        )

    async def bank_gl(self, pricing_date, pricing_month: str, fund_id=None) -> dict:
        payload = await self._request(
            "GET", f"/api/v1/reconciliation/{self._fund(fund_id)}/bank-gl",
            params=_period_params(pricing_date, pricing_month),
        )
        return payload["data"]

    async def period_summary(self, gl_code: str, pricing_date, pricing_month: str, fund_id=None) -> dict:
        params = _period_params(pricing_date, pricing_month)
        params["gl_code"] = gl_code
        payload = await self._request(
            "GET", f"/api/v1/reconciliation/{self._fund(fund_id)}/period-summary", params=params,
        )
        return payload["data"]

    async def reconciliation_status(self, pricing_date, pricing_month: str, fund_id=None) -> dict:
        payload = await self._request(
            "GET", f"/api/v1/reconciliation/{self._fund(fund_id)}/status",
            params=_period_params(pricing_date, pricing_month),
        )
        return payload["data"]

    def _reconciliation_body(
        self, gl_code: str, pricing_date, pricing_month: str, fund_id, statement_balance=None,
    ) -> dict:
        body = {
            "fund_id": self._fund(fund_id),
            "gl_code": gl_code,
            "pricing_date": str(pricing_date),
            "pricing_month": pricing_month,
        }
        if statement_balance is not None:
            body["statement_balance"] = str(Decimal(str(statement_balance)))
        return body

    async def initiate(self, gl_code: str, pricing_date, pricing_month: str, statement_balance, fund_id=None) -> dict:
        payload = await self._request(
            "POST", "/api/v1/reconciliation/reconciliation/initiate",
            json=self._reconciliation_body(gl_code, pricing_date, pricing_month, fund_id, statement_balance),
        )
        return payload["data"]

    async def reconcile(self, gl_code: str, pricing_date, pricing_month: str, statement_balance, fund_id=None) -> dict:
        return await self._request(
            "POST", "/api/v1/reconciliation/reconciliation/reconcile",
            json=self._reconciliation_body(gl_code, pricing_date, pricing_month, fund_id, statement_balance),
        )

    async def reopen(self, gl_code: str, pricing_date, pricing_month: str, fund_id=None) -> dict:
        return await self._request(
            "POST", "/api/v1/reconciliation/reconciliation/reopen",
            json=self._reconciliation_body(gl_code, pricing_date, pricing_month, fund_id),
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def trial_balance(self, period: str = "mtd", fund_id=None, **params: Any) -> dict:
        query = {"period": period, **{k: str(v) for k, v in params.items() if v is not None}}
        payload = await self._request(
            "GET", f"/api/v1/reports/{self._fund(fund_id)}/gl-trial", params=query,
        )
        return payload["data"]

    async def lot_summary(self, fund_id=None) -> dict:
        payload = await self._request("GET", f"/api/v1/reports/{self._fund(fund_id)}/lot-summary")
        return payload["data"]
