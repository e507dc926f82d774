from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Callable

import pytest

from karma_api.domain import REDEMPTION_ADD_TYPE, REDEMPTION_UPDATE_TYPE
from karma_api.workers import ConnectionState, EventSubSessionManager, SessionState

DEFAULT_URL = "wss://eventsub.test/ws"

_CLOSE = object()


def _frame(message_type: str, payload: dict[str, Any] | None = None, **metadata: Any) -> str:
    return json.dumps({"metadata": {"message_type": message_type, **metadata}, "payload": payload or {}})


def welcome(session_id: str) -> str:
    return _frame("session_welcome", {"session": {"id": session_id, "status": "connected"}})


def notification(subscription_type: str, event: dict[str, Any]) -> str:
    return _frame("notification", {"event": event}, subscription_type=subscription_type)


class FakeConnection:
    def __init__(self, frames: list[Any] | None = None) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        for frame in frames or []:
            self._queue.put_nowait(frame)

    def close(self) -> None:
        self._queue.put_nowait(_CLOSE)

    async def __aiter__(self):
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            yield item


class FakeConnector:
    """Scripted connect factory; each call consumes the next scripted connection."""

    def __init__(self, *script: FakeConnection | Exception) -> None:
        self._script = list(script)
        self.urls: list[str] = []

    def __call__(self, url: str):
        self.urls.append(url)
        item = self._script.pop(0) if self._script else FakeConnection()
        return self._open(item)

    @asynccontextmanager
    async def _open(self, item: FakeConnection | Exception):
        if isinstance(item, Exception):
            raise item
        yield item


class RecordingReconciler:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def reconcile(self, session_id: str, broadcaster_id: str) -> None:
        self.calls.append((session_id, broadcaster_id))


class RecordingLifecycle:
    def __init__(self, *, fail_first: bool = False) -> None:
        self.calls: list[tuple[str | None, dict]] = []
        self._fail_first = fail_first

    async def handle(self, subscription_type: str | None, event: dict) -> None:
        if self._fail_first:
            self._fail_first = False
            raise RuntimeError("lifecycle exploded")
        self.calls.append((subscription_type, dict(event)))


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


def _manager(connector: FakeConnector, *, lifecycle=None, reconciler=None, delay: float = 0.01):
    return EventSubSessionManager(
        reconciler=reconciler or RecordingReconciler(),
        lifecycle=lifecycle or RecordingLifecycle(),
        broadcaster_id="1001",
        url=DEFAULT_URL,
        reconnect_delay_seconds=delay,
        connect=connector,
    )


@pytest.mark.asyncio
async def test_welcome_reconciles_and_notifications_reach_lifecycle_in_order(reset_karma_observability) -> None:
    connection = FakeConnection(
        [
            welcome("session-1"),
            _frame("session_keepalive"),
            "{not json",
            json.dumps(["not", "a", "frame"]),
            _frame("mystery_type"),
            notification(REDEMPTION_ADD_TYPE, {"id": "r-1"}),
            notification(REDEMPTION_UPDATE_TYPE, {"id": "r-1", "status": "FULFILLED"}),
        ]
    )
    reconciler = RecordingReconciler()
    lifecycle = RecordingLifecycle()
    manager = _manager(FakeConnector(connection), lifecycle=lifecycle, reconciler=reconciler)

    manager.start()
    try:
        await wait_until(lambda: len(lifecycle.calls) == 2)
        await manager.drain()

        assert reconciler.calls == [("session-1", "1001")]
        assert lifecycle.calls == [
            (REDEMPTION_ADD_TYPE, {"id": "r-1"}),
            (REDEMPTION_UPDATE_TYPE, {"id": "r-1", "status": "FULFILLED"}),
        ]
        assert manager.session_id == "session-1"
        assert manager.state.connection_state == ConnectionState.OPEN
        stream = reset_karma_observability.snapshot().stream
        assert stream["connections"] == 1
        assert stream["malformed_frames"] == 2
        assert stream["ignored_frames"] == 1
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_session_reconnect_opens_new_url_immediately() -> None:
    first = FakeConnection(
        [
            welcome("session-1"),
            _frame("session_reconnect", {"session": {"id": "session-1", "reconnect_url": "wss://edge.test/ws?id=9"}}),
        ]
    )
    second = FakeConnection([welcome("session-2")])
    connector = FakeConnector(first, second)
    reconciler = RecordingReconciler()
    manager = _manager(connector, reconciler=reconciler, delay=30)

    manager.start()
    try:
        await wait_until(lambda: ("session-2", "1001") in reconciler.calls)

        assert connector.urls == [DEFAULT_URL, "wss://edge.test/ws?id=9"]
        assert reconciler.calls[-1] == ("session-2", "1001")
        assert manager.state.url == "wss://edge.test/ws?id=9"
        assert manager.session_id == "session-2"
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_drop_after_migration_retries_reconnect_url_once_then_default() -> None:
    migrated = FakeConnection(
        [_frame("session_reconnect", {"session": {"id": "session-1", "reconnect_url": "wss://edge.test/ws?id=9"}})]
    )
    dropped = FakeConnection()
    dropped.close()
    dropped_again = FakeConnection()
    dropped_again.close()
    connector = FakeConnector(migrated, dropped, dropped_again, FakeConnection([welcome("session-4")]))
    reconciler = RecordingReconciler()
    manager = _manager(connector, reconciler=reconciler)

    manager.start()
    try:
        await wait_until(lambda: ("session-4", "1001") in reconciler.calls)

        assert connector.urls == [DEFAULT_URL, "wss://edge.test/ws?id=9", "wss://edge.test/ws?id=9", DEFAULT_URL]
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_unsolicited_close_reconnects_to_default_after_delay(reset_karma_observability) -> None:
    first = FakeConnection([welcome("session-1")])
    first.close()
    second = FakeConnection([welcome("session-2")])
    connector = FakeConnector(first, second)
    reconciler = RecordingReconciler()
    manager = _manager(connector, reconciler=reconciler)

    manager.start()
    try:
        await wait_until(lambda: ("session-2", "1001") in reconciler.calls)

        assert connector.urls == [DEFAULT_URL, DEFAULT_URL]
        assert reset_karma_observability.snapshot().stream["unsolicited_closes"] == 1
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_transport_errors_are_retried(reset_karma_observability) -> None:
    connector = FakeConnector(OSError("connection refused"), OSError("still down"), FakeConnection([welcome("s-3")]))
    reconciler = RecordingReconciler()
    manager = _manager(connector, reconciler=reconciler)

    manager.start()
    try:
        await wait_until(lambda: reconciler.calls == [("s-3", "1001")])

        assert len(connector.urls) == 3
        assert reset_karma_observability.snapshot().stream["transport_errors"] == 2
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_consumer_survives_handler_failure() -> None:
    connection = FakeConnection(
        [
            notification(REDEMPTION_ADD_TYPE, {"id": "r-1"}),
            notification(REDEMPTION_ADD_TYPE, {"id": "r-2"}),
        ]
    )
    lifecycle = RecordingLifecycle(fail_first=True)
    manager = _manager(FakeConnector(connection), lifecycle=lifecycle)

    manager.start()
    try:
        await wait_until(lambda: len(lifecycle.calls) == 1)

        assert lifecycle.calls == [(REDEMPTION_ADD_TYPE, {"id": "r-2"})]
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_stop_clears_session_state() -> None:
    connection = FakeConnection([welcome("session-1")])
    reconciler = RecordingReconciler()
    manager = _manager(FakeConnector(connection), reconciler=reconciler)

    manager.start()
    await wait_until(lambda: reconciler.calls != [])
    await manager.stop()

    assert manager.state is None
    assert manager.session_id is None
    assert manager.is_running is False


@pytest.mark.asyncio
async def test_welcome_from_superseded_connection_is_ignored(reset_karma_observability) -> None:
    reconciler = RecordingReconciler()
    manager = _manager(FakeConnector(), reconciler=reconciler)
    stale = SessionState(url=DEFAULT_URL)

    await manager.handle_frame(stale, json.loads(welcome("stale-session")))
    await manager.handle_frame(
        stale,
        json.loads(_frame("revocation", {"subscription": {"type": REDEMPTION_ADD_TYPE, "status": "authorization_revoked"}})),
    )

    assert reconciler.calls == []
    assert stale.session_id is None
    assert reset_karma_observability.snapshot().stream["revocations"] == 1
