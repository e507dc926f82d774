from __future__ import annotations

from decimal import Decimal

import pytest

from karma_api.domain import REDEMPTION_ADD_TYPE, REDEMPTION_UPDATE_TYPE, RedemptionStatus
from karma_api.services.redemptions import RedemptionOutcome, requeue_pending_redemptions


def _event(redemption_id: str = "r-1", *, title: str = "Heal", status: str = "UNFULFILLED", user: str = "Viewer"):
    return {
        "id": redemption_id,
        "user_name": user,
        "user_login": user.lower(),
        "broadcaster_user_id": "1001",
        "status": status,
        "reward": {"id": "reward-1", "title": title},
    }


@pytest.mark.asyncio
async def test_duplicate_add_keeps_one_record_with_latest_payload(lifecycle, file_store) -> None:
    await lifecycle.handle(REDEMPTION_ADD_TYPE, _event(title="Heal"))
    await lifecycle.handle(REDEMPTION_ADD_TYPE, _event(title="Bleed"))

    pending = await file_store.pending_all()

    assert list(pending) == ["r-1"]
    assert pending["r-1"].title == "Bleed"
    assert pending["r-1"].delta == Decimal("-0.250")
    assert pending["r-1"].status == RedemptionStatus.UNFULFILLED
    assert await file_store.get_all() == {}


@pytest.mark.asyncio
async def test_add_records_pending_even_when_already_fulfilled(lifecycle, file_store) -> None:
    outcome = await lifecycle.handle(REDEMPTION_ADD_TYPE, _event(status="FULFILLED"))

    assert outcome == RedemptionOutcome.TRACKED
    record = await file_store.pending_get("r-1")
    assert record.status == RedemptionStatus.UNFULFILLED
    assert record.broadcaster_id == "1001"
    assert record.reward_id == "reward-1"


@pytest.mark.asyncio
async def test_fulfilled_twice_applies_delta_once(lifecycle, file_store, publisher) -> None:
    await lifecycle.handle(REDEMPTION_ADD_TYPE, _event())

    async with publisher.subscribe() as queue:
        first = await lifecycle.handle(REDEMPTION_UPDATE_TYPE, _event(status="FULFILLED"))
        second = await lifecycle.handle(REDEMPTION_UPDATE_TYPE, _event(status="FULFILLED"))

        assert first == RedemptionOutcome.FULFILLED
        assert second == RedemptionOutcome.UNKNOWN
        assert await file_store.get_all() == {"viewer": Decimal("0.250")}
        assert await file_store.pending_get("r-1") is None
        assert queue.qsize() == 1
        event = queue.get_nowait()

    assert event.user == "viewer"
    assert event.delta == Decimal("0.250")
    assert event.new_value == Decimal("0.250")
    assert event.source == "reward:Heal"


@pytest.mark.asyncio
async def test_status_matching_is_case_insensitive(lifecycle, file_store) -> None:
    await lifecycle.handle(REDEMPTION_ADD_TYPE, _event())

    outcome = await lifecycle.handle(REDEMPTION_UPDATE_TYPE, _event(status="fulfilled"))

    assert outcome == RedemptionOutcome.FULFILLED
    assert await file_store.get_user("viewer") == Decimal("0.250")


@pytest.mark.asyncio
async def test_fulfillment_clamps_to_bounds(lifecycle, file_store) -> None:
    await file_store.set_user("viewer", Decimal("4.9"))
    await lifecycle.handle(REDEMPTION_ADD_TYPE, _event())

    await lifecycle.handle(REDEMPTION_UPDATE_TYPE, _event(status="FULFILLED"))

    assert await file_store.get_user("viewer") == Decimal("5.000")


@pytest.mark.asyncio
async def test_canceled_removes_record_without_ledger_change(lifecycle, file_store, publisher) -> None:
    await lifecycle.handle(REDEMPTION_ADD_TYPE, _event())

    async with publisher.subscribe() as queue:
        outcome = await lifecycle.handle(REDEMPTION_UPDATE_TYPE, _event(status="CANCELED"))
        assert queue.empty()

    assert outcome == RedemptionOutcome.CANCELED
    assert await file_store.pending_all() == {}
    assert await file_store.get_all() == {}


@pytest.mark.asyncio
async def test_unknown_update_is_a_no_op(lifecycle, file_store) -> None:
    outcome = await lifecycle.handle(REDEMPTION_UPDATE_TYPE, _event("never-added", status="FULFILLED"))

    assert outcome == RedemptionOutcome.UNKNOWN
    assert await file_store.pending_all() == {}
    assert await file_store.get_all() == {}


@pytest.mark.asyncio
async def test_other_status_leaves_record_pending(lifecycle, file_store) -> None:
    await lifecycle.handle(REDEMPTION_ADD_TYPE, _event())

    outcome = await lifecycle.handle(REDEMPTION_UPDATE_TYPE, _event(status="PROCESSING"))

    assert outcome == RedemptionOutcome.IGNORED
    assert (await file_store.pending_get("r-1")).status == RedemptionStatus.UNFULFILLED


@pytest.mark.asyncio
async def test_unmapped_reward_is_dropped_and_counted(lifecycle, file_store, reset_karma_observability) -> None:
    outcome = await lifecycle.handle(REDEMPTION_ADD_TYPE, _event(title="Dance 💃"))

    assert outcome == RedemptionOutcome.UNMAPPED
    assert await file_store.pending_all() == {}
    snapshot = reset_karma_observability.snapshot()
    assert snapshot.unmapped_titles == {"dance 💃": 1}
    assert snapshot.redemptions == {"unmapped": 1}


@pytest.mark.asyncio
async def test_emoji_decorated_title_resolves(lifecycle, file_store) -> None:
    await lifecycle.handle(REDEMPTION_ADD_TYPE, _event(title="HEAL 💓"))
    await lifecycle.handle(REDEMPTION_ADD_TYPE, _event("r-2", title="Hydrate"))

    pending = await file_store.pending_all()

    assert pending["r-1"].delta == Decimal("0.250")
    assert pending["r-2"].delta == Decimal("0.100")


@pytest.mark.asyncio
async def test_malformed_and_unsupported_notifications(lifecycle) -> None:
    assert await lifecycle.handle(REDEMPTION_ADD_TYPE, {"reward": {"title": "Heal"}}) == RedemptionOutcome.INVALID
    assert await lifecycle.handle(REDEMPTION_UPDATE_TYPE, None) == RedemptionOutcome.INVALID
    assert await lifecycle.handle("channel.follow", {"id": "x"}) == RedemptionOutcome.UNSUPPORTED


@pytest.mark.asyncio
async def test_user_login_is_used_when_display_name_missing(lifecycle, file_store) -> None:
    event = _event()
    event.pop("user_name")

    await lifecycle.handle(REDEMPTION_ADD_TYPE, event)

    assert (await file_store.pending_get("r-1")).user == "viewer"


@pytest.mark.asyncio
async def test_requeue_rewrites_pending_records(lifecycle, file_store) -> None:
    await lifecycle.handle(REDEMPTION_ADD_TYPE, _event())
    await lifecycle.handle(REDEMPTION_ADD_TYPE, _event("r-2", title="Bleed"))

    dry = await requeue_pending_redemptions(file_store, dry_run=True)
    summary = await requeue_pending_redemptions(file_store)

    assert dry.dry_run is True
    assert sorted(dry.rewritten) == ["r-1", "r-2"]
    assert sorted(summary.rewritten) == ["r-1", "r-2"]
    assert summary.skipped == []
    assert (await file_store.pending_get("r-2")).delta == Decimal("-0.250")
