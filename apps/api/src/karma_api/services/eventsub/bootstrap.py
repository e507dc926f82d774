"""Start (and restart) the live event stream from stored or freshly issued tokens."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Mapping

import httpx
from loguru import logger

from karma_api.observability.karma import KarmaObservabilityStore
from karma_api.services.auth import OAuthError, TwitchOAuthClient
from karma_api.services.redemptions import RedemptionLifecycle
from karma_api.services.storage import KarmaStore, StoreError
from karma_api.workers.eventsub_session import (
    DEFAULT_EVENTSUB_URL,
    ConnectFactory,
    EventSubSessionManager,
)

from .helix import HelixEventSubClient, HelixRequestError
from .reconciler import SubscriptionReconciler


class EventSubBootstrapper:
    """Owns the single active :class:`EventSubSessionManager`.

    Starting with new tokens always stops the previous manager first, so at
    most one connection (and one set of subscriptions) is live.
    """

    def __init__(
        self,
        *,
        store: KarmaStore,
        oauth: TwitchOAuthClient,
        lifecycle: RedemptionLifecycle,
        client_id: str,
        login_url: str,
        helix_base_url: str = "https://api.twitch.tv/helix",
        eventsub_url: str = DEFAULT_EVENTSUB_URL,
        reconnect_delay_seconds: float = 1.5,
        timeout_seconds: float = 10.0,
        connect: ConnectFactory | None = None,
        http_client: httpx.AsyncClient | None = None,
        observability: KarmaObservabilityStore | None = None,
    ) -> None:
        self._store = store
        self._oauth = oauth
        self._lifecycle = lifecycle
        self._client_id = client_id
        self._login_url = login_url
        self._helix_base_url = helix_base_url
        self._eventsub_url = eventsub_url
        self._reconnect_delay_seconds = reconnect_delay_seconds
        self._timeout_seconds = timeout_seconds
        self._connect = connect
        self._http_client = http_client
        self._observability = observability
        self._helix: HelixEventSubClient | None = None
        self._start_lock = asyncio.Lock()
        self.manager: EventSubSessionManager | None = None

    async def boot(self) -> bool:
        """Start from stored tokens; returns False and logs guidance when that is impossible."""

        if not self._oauth.configured:
            logger.warning("EventSub disabled: CLIENT_ID/CLIENT_SECRET missing")
            return False
        try:
            tokens = await self._store.load_tokens()
        except StoreError as error:
            logger.error("Stored tokens unavailable", error=str(error))
            return False
        if not tokens or not tokens.get("access_token"):
            logger.info("No stored tokens; authorize the broadcaster", login_url=self._login_url)
            return False

        tokens = dict(tokens)
        refresh_token = tokens.get("refresh_token")
        if refresh_token:
            try:
                refreshed = await self._oauth.refresh(refresh_token)
            except OAuthError as error:
                logger.warning("Token refresh failed; re-authorize", login_url=self._login_url, error=str(error))
                return False
            tokens["access_token"] = refreshed["access_token"]
            tokens["refresh_token"] = refreshed.get("refresh_token") or refresh_token
            tokens["obtained_at"] = int(time.time() * 1000)
            try:
                await self._store.save_tokens(tokens)
            except StoreError as error:
                logger.error("Refreshed tokens not saved; re-authorize", login_url=self._login_url, error=str(error))
                return False

        try:
            await self.start_with_tokens(tokens)
        except (HelixRequestError, OAuthError) as error:
            logger.error("EventSub boot failed", login_url=self._login_url, error=str(error))
            return False
        return True

    async def authorize(self, code: str) -> dict[str, Any]:
        """Complete the OAuth callback: exchange, persist tokens, restart the stream."""

        grant = await self._oauth.exchange_code(code)
        helix = self._helix_client(grant["access_token"])
        try:
            user = await helix.get_user()
        finally:
            await helix.aclose()
        if not user:
            raise OAuthError("Token does not resolve to a broadcaster")
        tokens = {
            "access_token": grant["access_token"],
            "refresh_token": grant.get("refresh_token"),
            "obtained_at": int(time.time() * 1000),
            "scope": grant.get("scope"),
            "broadcaster_login": str(user.get("login") or "").lower(),
            "broadcaster_id": user.get("id"),
        }
        await self._store.save_tokens(tokens)
        await self.start_with_tokens(tokens)
        return tokens

    async def start_with_tokens(self, tokens: Mapping[str, Any]) -> EventSubSessionManager:
        """Replace the running manager; concurrent calls are serialized so one stays live."""

        async with self._start_lock:
            return await self._start(tokens)

    async def stop(self) -> None:
        async with self._start_lock:
            await self._stop()

    async def _start(self, tokens: Mapping[str, Any]) -> EventSubSessionManager:
        helix = self._helix_client(str(tokens["access_token"]))
        try:
            user = await helix.get_user()
        except HelixRequestError:
            await helix.aclose()
            raise
        if not user or not user.get("id"):
            await helix.aclose()
            raise OAuthError("Token does not resolve to a broadcaster")

        await self._stop()
        broadcaster_id = str(user["id"])
        self._lifecycle.broadcaster_id = broadcaster_id
        self._helix = helix
        self.manager = EventSubSessionManager(
            reconciler=SubscriptionReconciler(helix, observability=self._observability),
            lifecycle=self._lifecycle,
            broadcaster_id=broadcaster_id,
            url=self._eventsub_url,
            reconnect_delay_seconds=self._reconnect_delay_seconds,
            connect=self._connect,
            observability=self._observability,
        )
        logger.info("Starting EventSub", broadcaster_login=user.get("login"), broadcaster_id=broadcaster_id)
        self.manager.start()
        return self.manager

    async def _stop(self) -> None:
        if self.manager is not None:
            await self.manager.stop()
            self.manager = None
        if self._helix is not None:
            await self._helix.aclose()
            self._helix = None

    def _helix_client(self, access_token: str) -> HelixEventSubClient:
        return HelixEventSubClient(
            client_id=self._client_id,
            access_token=access_token,
            base_url=self._helix_base_url,
            http_client=self._http_client,
            timeout_seconds=self._timeout_seconds,
        )


__all__ = ["EventSubBootstrapper"]
