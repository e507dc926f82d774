"""Redemption lifecycle: turns add → fulfilled/canceled notifications into at-most-once ledger changes."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from loguru import logger

from karma_api.domain import (
    REDEMPTION_ADD_TYPE,
    REDEMPTION_UPDATE_TYPE,
    RedemptionRecord,
    RedemptionStatus,
    normalize_user,
)
from karma_api.observability.karma import KarmaObservabilityStore, get_karma_store
from karma_api.services.broadcast import BroadcastPublisher
from karma_api.services.ledger import KarmaLedger
from karma_api.services.rewards import RewardResolver
from karma_api.services.storage import KarmaStore


class RedemptionOutcome(str, Enum):
    """What a single notification did to the pending set and the ledger."""

    TRACKED = "tracked"
    UNMAPPED = "unmapped"
    FULFILLED = "fulfilled"
    CANCELED = "canceled"
    UNKNOWN = "unknown"
    IGNORED = "ignored"
    INVALID = "invalid"
    UNSUPPORTED = "unsupported"


class RedemptionLifecycle:
    """Owns pending redemption records.

    ``absent -> UNFULFILLED -> {FULFILLED, CANCELED}``; terminal records are
    removed. The ledger is touched only when a FULFILLED update finds a pending
    record, and that record is removed before the delta is applied, so a
    duplicated or replayed FULFILLED delivery can never apply twice.
    """

    def __init__(
        self,
        *,
        store: KarmaStore,
        resolver: RewardResolver,
        ledger: KarmaLedger,
        publisher: BroadcastPublisher,
        broadcaster_id: str | None = None,
        observability: KarmaObservabilityStore | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._ledger = ledger
        self._publisher = publisher
        self.broadcaster_id = broadcaster_id
        self._observability = observability or get_karma_store()

    async def handle(self, subscription_type: str | None, event: Mapping[str, Any] | None) -> RedemptionOutcome:
        if subscription_type == REDEMPTION_ADD_TYPE:
            outcome = await self.handle_add(event or {})
        elif subscription_type == REDEMPTION_UPDATE_TYPE:
            outcome = await self.handle_update(event or {})
        else:
            logger.debug("Ignoring notification for unsupported subscription", subscription_type=subscription_type)
            outcome = RedemptionOutcome.UNSUPPORTED
        self._observability.record_redemption_outcome(outcome.value)
        return outcome

    async def handle_add(self, event: Mapping[str, Any]) -> RedemptionOutcome:
        redemption_id = _string(event.get("id"))
        reward = event.get("reward") or {}
        title = _string(reward.get("title")) or ""
        if not redemption_id:
            logger.warning("Redemption add without id dropped", title=title)
            return RedemptionOutcome.INVALID

        match = self._resolver.match(title)
        if not match.is_mapped:
            self._observability.record_unmapped_title(match.normalized_key)
            logger.debug("Unmapped reward redeemed", redemption_id=redemption_id, title=title)
            return RedemptionOutcome.UNMAPPED

        record = RedemptionRecord(
            id=redemption_id,
            user=_string(event.get("user_name")) or _string(event.get("user_login")) or "unknown",
            title=title,
            delta=match.delta,
            reward_id=_string(reward.get("id")),
            broadcaster_id=_string(event.get("broadcaster_user_id")) or self.broadcaster_id,
            created_at=datetime.now(timezone.utc),
            status=RedemptionStatus.UNFULFILLED,
        )
        await self._store.pending_add(record)
        logger.info(
            "Redemption pending",
            redemption_id=record.id,
            user=record.user,
            title=record.title,
            delta=str(record.delta),
        )
        return RedemptionOutcome.TRACKED

    async def handle_update(self, event: Mapping[str, Any]) -> RedemptionOutcome:
        redemption_id = _string(event.get("id"))
        if not redemption_id:
            logger.warning("Redemption update without id dropped")
            return RedemptionOutcome.INVALID

        record = await self._store.pending_get(redemption_id)
        if record is None:
            logger.debug("Update for untracked redemption ignored", redemption_id=redemption_id)
            return RedemptionOutcome.UNKNOWN

        status = RedemptionStatus.parse(event.get("status"))
        if status == RedemptionStatus.FULFILLED:
            await self._store.pending_delete(redemption_id)
            value = await self._ledger.apply_delta(record.user, record.delta)
            self._publisher.publish(normalize_user(record.user), value, record.delta, f"reward:{record.title}")
            logger.info(
                "Redemption fulfilled",
                redemption_id=redemption_id,
                user=record.user,
                delta=str(record.delta),
                value=str(value),
            )
            return RedemptionOutcome.FULFILLED
        if status == RedemptionStatus.CANCELED:
            await self._store.pending_delete(redemption_id)
            logger.info("Redemption canceled", redemption_id=redemption_id, user=record.user)
            return RedemptionOutcome.CANCELED

        logger.debug(
            "Redemption update left pending",
            redemption_id=redemption_id,
            status=event.get("status"),
        )
        return RedemptionOutcome.IGNORED


def _string(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


__all__ = ["RedemptionLifecycle", "RedemptionOutcome"]
