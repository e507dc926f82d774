"""Thin ``httpx`` client for the Helix EventSub subscription and user endpoints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

WEBSOCKET_TRANSPORT = "websocket"
_MAX_PAGES = 50


class HelixRequestError(RuntimeError):
    """Raised when the platform API answers with an unexpected status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class SubscriptionDescriptor:
    id: str
    type: str
    version: str
    status: str | None
    method: str | None
    session_id: str | None
    condition: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SubscriptionDescriptor":
        transport = payload.get("transport") or {}
        return cls(
            id=str(payload.get("id") or ""),
            type=str(payload.get("type") or ""),
            version=str(payload.get("version") or ""),
            status=payload.get("status"),
            method=transport.get("method"),
            session_id=transport.get("session_id"),
            condition=dict(payload.get("condition") or {}),
        )


class HelixEventSubClient:
    """Create, list and delete EventSub subscriptions with a user access token."""

    def __init__(
        self,
        *,
        client_id: str,
        access_token: str,
        base_url: str = "https://api.twitch.tv/helix",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._client_id = client_id
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def list_subscriptions(self) -> list[SubscriptionDescriptor]:
        descriptors: list[SubscriptionDescriptor] = []
        params: dict[str, str] = {}
        seen_cursors: set[str] = set()
        for _ in range(_MAX_PAGES):
            body = await self._request("GET", "/eventsub/subscriptions", params=params or None, expected=(200,))
            descriptors.extend(SubscriptionDescriptor.from_payload(item) for item in body.get("data") or [])
            cursor = (body.get("pagination") or {}).get("cursor")
            if not cursor or cursor in seen_cursors:
                break
            seen_cursors.add(cursor)
            params["after"] = cursor
        return descriptors

    async def create_subscription(
        self,
        subscription_type: str,
        *,
        version: str,
        condition: Mapping[str, Any],
        session_id: str,
    ) -> SubscriptionDescriptor:
        body = await self._request(
            "POST",
            "/eventsub/subscriptions",
            json={
                "type": subscription_type,
                "version": version,
                "condition": dict(condition),
                "transport": {"method": WEBSOCKET_TRANSPORT, "session_id": session_id},
            },
            expected=(200, 202),
        )
        data = body.get("data") or []
        if not data:
            raise HelixRequestError(f"CreateSub {subscription_type} returned no subscription")
        return SubscriptionDescriptor.from_payload(data[0])

    async def delete_subscription(self, subscription_id: str) -> None:
        await self._request("DELETE", "/eventsub/subscriptions", params={"id": subscription_id}, expected=(204, 200))

    async def get_user(self, *, login: str | None = None) -> dict[str, Any] | None:
        """Return the user behind the token (or the named login)."""

        params = {"login": login} if login else None
        body = await self._request("GET", "/users", params=params, expected=(200,))
        data = body.get("data") or []
        return dict(data[0]) if data else None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any = None,
        expected: tuple[int, ...],
    ) -> dict[str, Any]:
        headers = {"Client-Id": self._client_id, "Authorization": f"Bearer {self._access_token}"}
        try:
            response = await self._client.request(
                method, f"{self._base_url}{path}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as error:
            raise HelixRequestError(f"{method} {path} failed: {error}") from error
        if response.status_code not in expected:
            raise HelixRequestError(
                f"{method} {path} failed: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()


__all__ = [
    "HelixEventSubClient",
    "HelixRequestError",
    "SubscriptionDescriptor",
    "WEBSOCKET_TRANSPORT",
]
