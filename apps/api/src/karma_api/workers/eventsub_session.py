"""In-process worker owning the single live EventSub websocket session."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncContextManager, Callable, Mapping

import websockets
from loguru import logger

from karma_api.observability.karma import KarmaObservabilityStore, get_karma_store
from karma_api.services.eventsub.reconciler import SubscriptionReconciler
from karma_api.services.redemptions import RedemptionLifecycle

DEFAULT_EVENTSUB_URL = "wss://eventsub.wss.twitch.tv/ws"

ConnectFactory = Callable[[str], AsyncContextManager[Any]]

_TRANSPORT_ERRORS = (
    websockets.ConnectionClosed,
    websockets.InvalidHandshake,
    websockets.InvalidURI,
    OSError,
    asyncio.TimeoutError,
)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class SessionState:
    """Everything known about one connection; replaced wholesale on reconnect."""

    url: str
    session_id: str | None = None
    reconnect_url: str | None = None
    connection_state: ConnectionState = ConnectionState.CONNECTING


class EventSubSessionManager:
    """Keeps one EventSub connection alive and feeds its frames to a single consumer.

    The reader task owns the transport: it decodes frames, follows
    ``session_reconnect`` immediately and reconnects after a fixed delay on
    any other close. Every other frame goes onto an ``asyncio.Queue`` drained
    by one consumer, so notifications reach the redemption lifecycle one at a
    time and in arrival order.
    """

    def __init__(
        self,
        *,
        reconciler: SubscriptionReconciler,
        lifecycle: RedemptionLifecycle,
        broadcaster_id: str,
        url: str = DEFAULT_EVENTSUB_URL,
        reconnect_delay_seconds: float = 1.5,
        connect: ConnectFactory | None = None,
        observability: KarmaObservabilityStore | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._lifecycle = lifecycle
        self.broadcaster_id = broadcaster_id
        self._url = url
        self.reconnect_delay_seconds = reconnect_delay_seconds
        self._connect = connect or websockets.connect
        self._observability = observability or get_karma_store()
        self._frames: asyncio.Queue[tuple[SessionState, dict[str, Any]]] = asyncio.Queue()
        self._stop_event = asyncio.Event()
        self._reader: asyncio.Task | None = None
        self._consumer: asyncio.Task | None = None
        self._state: SessionState | None = None
        self.is_running: bool = False

    @property
    def state(self) -> SessionState | None:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._state.session_id if self._state else None

    def start(self) -> None:
        if self._reader and not self._reader.done():
            return
        self._stop_event.clear()
        self._consumer = asyncio.create_task(self._consume())
        self._reader = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info("EventSub session manager started", url=self._url, broadcaster_id=self.broadcaster_id)

    async def stop(self) -> None:
        if not self._reader:
            return
        self._stop_event.set()
        for task in (self._reader, self._consumer):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reader = None
        self._consumer = None
        self._state = None
        self._frames = asyncio.Queue()
        self.is_running = False
        logger.info("EventSub session manager stopped")

    async def drain(self) -> None:
        """Wait until every frame handed to the consumer has been processed."""

        await self._frames.join()

    async def _run_loop(self) -> None:
        url = self._url
        # Reconnect URL the platform migrated us to; tried once after a drop, then the default.
        last_reconnect_url: str | None = None
        while not self._stop_event.is_set():
            state = SessionState(url=url)
            self._state = state
            requested_url = await self._read_connection(state)
            if self._stop_event.is_set():
                break
            if requested_url:
                url = last_reconnect_url = requested_url
                continue
            url = last_reconnect_url or self._url
            last_reconnect_url = None
            logger.info(
                "EventSub reconnect scheduled",
                url=url,
                delay_seconds=self.reconnect_delay_seconds,
            )
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.reconnect_delay_seconds)
            except asyncio.TimeoutError:
                continue

    async def _read_connection(self, state: SessionState) -> str | None:
        """Read one connection until it closes; return a URL to follow immediately, if any."""

        try:
            async with self._connect(state.url) as connection:
                state.connection_state = ConnectionState.OPEN
                self._observability.record_stream_event("connections")
                logger.info("EventSub connection open", url=state.url)
                async for raw in connection:
                    frame = _decode_frame(raw)
                    if frame is None:
                        self._observability.record_stream_event("malformed_frames")
                        logger.warning("Malformed EventSub frame dropped", size=len(raw or ""))
                        continue
                    if _message_type(frame) == "session_reconnect":
                        reconnect_url = _session(frame).get("reconnect_url")
                        if reconnect_url:
                            state.reconnect_url = str(reconnect_url)
                            self._observability.record_stream_event("reconnect_requests")
                            logger.info("EventSub reconnect requested", reconnect_url=state.reconnect_url)
                            return state.reconnect_url
                        logger.warning("EventSub reconnect frame without URL ignored")
                        continue
                    if state is not self._state:
                        continue
                    await self._frames.put((state, frame))
            self._observability.record_stream_event("unsolicited_closes")
            logger.warning("EventSub connection closed by peer", url=state.url)
        except _TRANSPORT_ERRORS as error:
            self._observability.record_stream_event("transport_errors")
            logger.warning("EventSub transport error", url=state.url, error=str(error))
        finally:
            state.connection_state = ConnectionState.CLOSED
        return None

    async def _consume(self) -> None:
        while True:
            state, frame = await self._frames.get()
            try:
                await self.handle_frame(state, frame)
            except Exception as exc:  # pragma: no cover
                logger.exception(
                    "EventSub frame handling failed",
                    message_type=_message_type(frame),
                    error=str(exc),
                )
            finally:
                self._frames.task_done()

    async def handle_frame(self, state: SessionState, frame: Mapping[str, Any]) -> None:
        message_type = _message_type(frame)
        if message_type == "session_welcome":
            if state is not self._state:
                logger.debug("Welcome from superseded connection ignored")
                return
            session_id = _session(frame).get("id")
            if not session_id:
                self._observability.record_stream_event("malformed_frames")
                logger.warning("EventSub welcome without session id dropped")
                return
            state.session_id = str(session_id)
            self._observability.record_stream_event("welcomes")
            logger.info("EventSub session established", session_id=state.session_id)
            await self._reconciler.reconcile(state.session_id, self.broadcaster_id)
        elif message_type == "notification":
            metadata = frame.get("metadata") or {}
            payload = frame.get("payload") or {}
            event = payload.get("event") if isinstance(payload, Mapping) else None
            await self._lifecycle.handle(metadata.get("subscription_type"), event if isinstance(event, Mapping) else {})
        elif message_type == "session_keepalive":
            return
        elif message_type == "revocation":
            subscription = (frame.get("payload") or {}).get("subscription") or {}
            self._observability.record_stream_event("revocations")
            logger.warning(
                "EventSub subscription revoked; event type inactive until reconnect",
                subscription_type=subscription.get("type"),
                status=subscription.get("status"),
            )
        else:
            self._observability.record_stream_event("ignored_frames")
            logger.debug("EventSub frame ignored", message_type=message_type)


def _decode_frame(raw: str | bytes | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(frame, dict) or not isinstance(frame.get("metadata"), dict):
        return None
    return frame


def _message_type(frame: Mapping[str, Any]) -> str | None:
    metadata = frame.get("metadata") or {}
    return metadata.get("message_type")


def _session(frame: Mapping[str, Any]) -> Mapping[str, Any]:
    payload = frame.get("payload") or {}
    session = payload.get("session") if isinstance(payload, Mapping) else None
    return session if isinstance(session, Mapping) else {}


__all__ = [
    "ConnectionState",
    "DEFAULT_EVENTSUB_URL",
    "EventSubSessionManager",
    "SessionState",
]
