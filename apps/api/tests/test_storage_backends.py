from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import httpx
import pytest

from karma_api.core.settings import Settings
from karma_api.domain import RedemptionRecord, RedemptionStatus
from karma_api.services.storage import (
    FileKarmaStore,
    HostedKarmaStore,
    RelationalKarmaStore,
    StoreConfigurationError,
    StoreError,
    create_store,
)


def _record(redemption_id: str, *, minutes_ago: int = 0, delta: str = "0.25") -> RedemptionRecord:
    return RedemptionRecord(
        id=redemption_id,
        user="Viewer",
        title="Heal",
        delta=Decimal(delta),
        reward_id="reward-1",
        broadcaster_id="1001",
        created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    )


@pytest.mark.asyncio
async def test_file_store_persists_document_atomically(tmp_path, bounds) -> None:
    path = tmp_path / "nested" / "karma.json"
    store = FileKarmaStore(path, bounds=bounds)
    await store.init()

    await store.apply_delta("viewer", Decimal("1.5"))
    await store.save_tokens({"access_token": "abc", "refresh_token": "def"})
    await store.pending_add(_record("r-1"))

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["karma"] == {"viewer": "1.500"}
    assert document["tokens"]["access_token"] == "abc"
    assert document["pending"]["r-1"]["status"] == "UNFULFILLED"
    assert not [item for item in path.parent.iterdir() if item.name != "karma.json"]

    reopened = FileKarmaStore(path, bounds=bounds)
    await reopened.init()
    assert await reopened.get_user("viewer") == Decimal("1.500")
    assert await reopened.load_tokens() == {"access_token": "abc", "refresh_token": "def"}
    assert (await reopened.pending_get("r-1")).delta == Decimal("0.250")


@pytest.mark.asyncio
async def test_file_store_rejects_corrupt_document(tmp_path, bounds) -> None:
    path = tmp_path / "karma.json"
    path.write_text("{broken", encoding="utf-8")
    store = FileKarmaStore(path, bounds=bounds)

    with pytest.raises(StoreError):
        await store.init()


@pytest.mark.asyncio
async def test_file_store_failed_write_leaves_state_unchanged(file_store, bounds, monkeypatch) -> None:
    await file_store.apply_delta("viewer", Decimal("1"))
    await file_store.pending_add(_record("r-1"))

    def _disk_full(document: dict[str, Any]) -> None:
        raise StoreError("disk full")

    monkeypatch.setattr(file_store, "_write", _disk_full)
    with pytest.raises(StoreError):
        await file_store.apply_delta("viewer", Decimal("1"))
    with pytest.raises(StoreError):
        await file_store.pending_add(_record("r-2"))
    with pytest.raises(StoreError):
        await file_store.pending_delete("r-1")
    monkeypatch.undo()

    assert await file_store.get_user("viewer") == Decimal("1.000")
    assert list(await file_store.pending_all()) == ["r-1"]

    await file_store.apply_delta("viewer", Decimal("0.5"))
    reopened = FileKarmaStore(file_store.path, bounds=bounds)
    await reopened.init()
    assert await reopened.get_user("viewer") == Decimal("1.500")


@pytest.mark.asyncio
async def test_file_store_skips_unreadable_pending_records(tmp_path, bounds) -> None:
    path = tmp_path / "karma.json"
    good = _record("good").as_dict()
    bad = {**_record("bad").as_dict(), "delta": "NaN"}
    path.write_text(json.dumps({"karma": {}, "tokens": None, "pending": {"good": good, "bad": bad}}), encoding="utf-8")
    store = FileKarmaStore(path, bounds=bounds)
    await store.init()

    assert list(await store.pending_all()) == ["good"]
    assert await store.pending_get("bad") is None


@pytest.mark.asyncio
async def test_file_store_pending_all_is_ordered_and_upserts(file_store) -> None:
    await file_store.pending_add(_record("newer", minutes_ago=1))
    await file_store.pending_add(_record("older", minutes_ago=5))
    await file_store.pending_add(_record("newer", minutes_ago=1, delta="0.5"))

    pending = await file_store.pending_all()

    assert list(pending) == ["older", "newer"]
    assert pending["newer"].delta == Decimal("0.500")

    await file_store.pending_delete("older")
    await file_store.pending_delete("missing")
    assert list(await file_store.pending_all()) == ["newer"]


@pytest.mark.asyncio
async def test_relational_store_round_trips_pending_and_tokens(session_factory, bounds) -> None:
    store = RelationalKarmaStore(session_factory, bounds=bounds)

    assert await store.load_tokens() is None
    await store.save_tokens({"access_token": "one"})
    await store.save_tokens({"access_token": "two"})
    assert await store.load_tokens() == {"access_token": "two"}

    await store.pending_add(_record("r-1", minutes_ago=2))
    await store.pending_add(_record("r-2"))
    await store.pending_add(_record("r-1", minutes_ago=2))

    pending = await store.pending_all()
    assert list(pending) == ["r-1", "r-2"]
    fetched = await store.pending_get("r-1")
    assert fetched is not None
    assert fetched.user == "Viewer"
    assert fetched.delta == Decimal("0.250")
    assert fetched.status == RedemptionStatus.UNFULFILLED
    assert fetched.created_at.tzinfo is not None

    await store.pending_delete("r-1")
    assert await store.pending_get("r-1") is None


class _FakePostgrest:
    """Minimal PostgREST stand-in: karma rows plus the clamp RPC."""

    def __init__(self) -> None:
        self.karma: dict[str, Decimal] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert request.headers["apikey"] == "service-key"
        assert request.headers["Authorization"] == "Bearer service-key"
        path = request.url.path
        if path == "/rest/v1/rpc/karma_apply_delta":
            body = json.loads(request.content)
            current = self.karma.get(body["p_user"], Decimal("0"))
            value = max(Decimal(body["p_min"]), min(Decimal(body["p_max"]), current + Decimal(body["p_delta"])))
            self.karma[body["p_user"]] = value
            return httpx.Response(200, json=float(value))
        if path == "/rest/v1/karma" and request.method == "GET":
            rows: list[dict[str, Any]] = [
                {"user_name": user, "value": float(value)} for user, value in self.karma.items()
            ]
            return httpx.Response(200, json=rows)
        if path == "/rest/v1/pending" and request.method == "POST":
            assert request.url.params["on_conflict"] == "id"
            assert "merge-duplicates" in request.headers["Prefer"]
            return httpx.Response(201)
        return httpx.Response(404, json={"message": "not found"})


@pytest.mark.asyncio
async def test_hosted_store_uses_rpc_for_atomic_delta(bounds) -> None:
    backend = _FakePostgrest()
    client = httpx.AsyncClient(transport=httpx.MockTransport(backend))
    store = HostedKarmaStore(
        base_url="https://project.example.co/",
        service_key="service-key",
        bounds=bounds,
        http_client=client,
    )

    try:
        await store.init()
        assert await store.apply_delta("viewer", Decimal("4.9")) == Decimal("4.900")
        assert await store.apply_delta("viewer", Decimal("1")) == Decimal("5.000")
        assert await store.get_all() == {"viewer": Decimal("5.000")}
        await store.pending_add(_record("r-1"))

        with pytest.raises(StoreError):
            await store.pending_get("r-1")
    finally:
        await client.aclose()


def test_hosted_store_requires_credentials(bounds) -> None:
    with pytest.raises(StoreConfigurationError):
        HostedKarmaStore(base_url=None, service_key="key", bounds=bounds)


def test_create_store_selects_backend_once(tmp_path) -> None:
    file_config = Settings(store_backend="file", karma_data_path=str(tmp_path / "k.json"))
    relational_config = Settings(store_backend="relational", database_url="sqlite+aiosqlite:///:memory:")

    assert isinstance(create_store(file_config), FileKarmaStore)
    assert isinstance(create_store(relational_config), RelationalKarmaStore)
    with pytest.raises(StoreConfigurationError):
        create_store(Settings(store_backend="hosted", supabase_url=None, supabase_key=None))
