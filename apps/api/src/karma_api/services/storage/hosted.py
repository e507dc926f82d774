"""Supabase (PostgREST) karma store.

The tables match the relational backend. ``apply_delta`` calls the
``karma_apply_delta`` Postgres function created by the Alembic migration, so
the clamped read-modify-write runs inside the database.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

import httpx
from loguru import logger

from karma_api.domain import LedgerBounds, RedemptionRecord, to_decimal

from .base import StoreConfigurationError, StoreError

APPLY_DELTA_FUNCTION = "karma_apply_delta"


class HostedKarmaStore:
    """Karma store talking to a hosted Postgres through its REST gateway."""

    def __init__(
        self,
        *,
        base_url: str | None,
        service_key: str | None,
        bounds: LedgerBounds,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        if not base_url or not service_key:
            raise StoreConfigurationError("SUPABASE_URL and SUPABASE_KEY are required for the hosted karma store")
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._service_key = service_key
        self._bounds = bounds
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None

    async def init(self) -> None:
        await self._request("GET", "/karma", params={"select": "user_name", "limit": "1"})
        logger.info("Hosted karma store reachable", rest_url=self._rest_url)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_all(self) -> dict[str, Decimal]:
        rows = await self._request("GET", "/karma", params={"select": "user_name,value"})
        return {row["user_name"]: to_decimal(row["value"]) for row in rows or []}

    async def get_user(self, user: str) -> Decimal:
        rows = await self._request("GET", "/karma", params={"select": "value", "user_name": f"eq.{user}"})
        return to_decimal(rows[0]["value"]) if rows else to_decimal(0)

    async def apply_delta(self, user: str, delta: Decimal) -> Decimal:
        result = await self._request(
            "POST",
            f"/rpc/{APPLY_DELTA_FUNCTION}",
            json={
                "p_user": user,
                "p_delta": str(delta),
                "p_min": str(self._bounds.minimum),
                "p_max": str(self._bounds.maximum),
            },
        )
        if isinstance(result, list):
            result = result[0] if result else None
        if isinstance(result, Mapping):
            result = result.get(APPLY_DELTA_FUNCTION, result.get("value"))
        if result is None:
            raise StoreError(f"{APPLY_DELTA_FUNCTION} returned no value for {user}")
        return to_decimal(result)

    async def set_user(self, user: str, value: Decimal) -> Decimal:
        clamped = self._bounds.clamp(value)
        await self._upsert("karma", {"user_name": user, "value": str(clamped)}, conflict="user_name")
        return clamped

    async def save_tokens(self, tokens: Mapping[str, Any]) -> None:
        await self._upsert("tokens", {"id": 1, "data": dict(tokens)}, conflict="id")

    async def load_tokens(self) -> dict[str, Any] | None:
        rows = await self._request("GET", "/tokens", params={"select": "data", "id": "eq.1"})
        return dict(rows[0]["data"]) if rows and rows[0].get("data") else None

    async def pending_add(self, record: RedemptionRecord) -> None:
        payload = record.as_dict()
        row = {
            "id": payload["id"],
            "user_name": payload["user"],
            "title": payload["title"],
            "delta": payload["delta"],
            "reward_id": payload["reward_id"],
            "broadcaster_id": payload["broadcaster_id"],
            "created_at": payload["created_at"],
            "status": payload["status"],
        }
        await self._upsert("pending", row, conflict="id")

    async def pending_get(self, redemption_id: str) -> RedemptionRecord | None:
        rows = await self._request("GET", "/pending", params={"select": "*", "id": f"eq.{redemption_id}"})
        return _row_to_record(rows[0]) if rows else None

    async def pending_all(self) -> dict[str, RedemptionRecord]:
        rows = await self._request("GET", "/pending", params={"select": "*", "order": "created_at.asc"})
        return {row["id"]: _row_to_record(row) for row in rows or []}

    async def pending_delete(self, redemption_id: str) -> None:
        await self._request(
            "DELETE",
            "/pending",
            params={"id": f"eq.{redemption_id}"},
            prefer="return=minimal",
        )

    async def _upsert(self, table: str, row: Mapping[str, Any], *, conflict: str) -> None:
        await self._request(
            "POST",
            f"/{table}",
            params={"on_conflict": conflict},
            json=[dict(row)],
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        headers = {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = await self._client.request(
                method,
                f"{self._rest_url}{path}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as error:
            raise StoreError(f"Hosted karma store unreachable ({method} {path}): {error}") from error
        if response.status_code >= 400:
            raise StoreError(
                f"Hosted karma store {method} {path} failed: {response.status_code} {response.text}"
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()


def _row_to_record(row: Mapping[str, Any]) -> RedemptionRecord:
    return RedemptionRecord.from_dict(
        {
            "id": row["id"],
            "user": row.get("user_name"),
            "title": row.get("title"),
            "delta": row.get("delta", 0),
            "reward_id": row.get("reward_id"),
            "broadcaster_id": row.get("broadcaster_id"),
            "created_at": row.get("created_at"),
            "status": row.get("status"),
        }
    )


__all__ = ["APPLY_DELTA_FUNCTION", "HostedKarmaStore"]
