"""Authorization-code OAuth flow for the broadcaster's channel point scope."""

from __future__ import annotations

import secrets
import time
from threading import Lock
from typing import Any, Callable

import httpx

OAUTH_SCOPES = ("channel:read:redemptions",)
STATE_TTL_SECONDS = 10 * 60


class OAuthError(RuntimeError):
    """Raised when the identity provider rejects a token request."""


class OAuthStateStore:
    """One-time ``state`` values guarding the callback against forged redirects."""

    def __init__(
        self,
        *,
        ttl_seconds: int = STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._expires: dict[str, float] = {}

    def issue(self) -> str:
        state = secrets.token_hex(16)
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._expires[state] = now + self._ttl_seconds
        return state

    def consume(self, state: str | None) -> bool:
        """Return True once for a live state; any later call for it returns False."""

        if not state:
            return False
        with self._lock:
            expires_at = self._expires.pop(state, None)
        return expires_at is not None and expires_at > self._clock()

    def _prune(self, now: float) -> None:
        for key in [key for key, expires_at in self._expires.items() if expires_at <= now]:
            del self._expires[key]


class TwitchOAuthClient:
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        base_url: str = "https://id.twitch.tv/oauth2",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None

    @property
    def configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def authorize_url(self, state: str) -> str:
        url = httpx.URL(
            f"{self._base_url}/authorize",
            params={
                "client_id": self._client_id,
                "redirect_uri": self.redirect_uri,
                "response_type": "code",
                "scope": " ".join(OAUTH_SCOPES),
                "state": state,
            },
        )
        return str(url)

    async def exchange_code(self, code: str) -> dict[str, Any]:
        return await self._token_request(
            {
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
            }
        )

    async def refresh(self, refresh_token: str) -> dict[str, Any]:
        return await self._token_request({"refresh_token": refresh_token, "grant_type": "refresh_token"})

    async def _token_request(self, form: dict[str, str]) -> dict[str, Any]:
        if not self.configured:
            raise OAuthError("CLIENT_ID and CLIENT_SECRET must be configured")
        data = {"client_id": self._client_id, "client_secret": self._client_secret, **form}
        try:
            response = await self._client.post(f"{self._base_url}/token", data=data)
        except httpx.HTTPError as error:
            raise OAuthError(f"Token request failed: {error}") from error
        if response.status_code != 200:
            raise OAuthError(f"Token request failed: {response.status_code} {response.text}")
        body = response.json()
        if not body.get("access_token"):
            raise OAuthError("Token response did not include an access token")
        return body


__all__ = [
    "OAUTH_SCOPES",
    "OAuthError",
    "OAuthStateStore",
    "STATE_TTL_SECONDS",
    "TwitchOAuthClient",
]
