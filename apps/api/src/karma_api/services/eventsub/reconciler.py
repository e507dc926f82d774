"""Keeps the platform's redemption subscriptions bound to the current stream session."""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from karma_api.domain import REDEMPTION_EVENT_TYPES
from karma_api.observability.karma import KarmaObservabilityStore, get_karma_store
from karma_api.observability.tracing import get_tracer

from .helix import WEBSOCKET_TRANSPORT, HelixEventSubClient, HelixRequestError

SUBSCRIPTION_VERSION = "1"

_tracer = get_tracer(__name__)


@dataclass
class ReconciliationResult:
    session_id: str
    deleted: list[str] = field(default_factory=list)
    delete_failures: list[str] = field(default_factory=list)
    created: dict[str, str] = field(default_factory=dict)
    degraded_types: list[str] = field(default_factory=list)
    list_failed: bool = False

    @property
    def complete(self) -> bool:
        return not self.degraded_types


class SubscriptionReconciler:
    """Delete every websocket redemption subscription, then create one of each type.

    A new session id means any existing websocket subscription is stale, so
    the reconciler never tries to reuse one. List and delete failures are
    tolerated; a failed create leaves that event type silent until the next
    reconnect and is reported as degraded.
    """

    def __init__(
        self,
        client: HelixEventSubClient,
        *,
        observability: KarmaObservabilityStore | None = None,
    ) -> None:
        self._client = client
        self._observability = observability or get_karma_store()

    async def reconcile(self, session_id: str, broadcaster_id: str) -> ReconciliationResult:
        result = ReconciliationResult(session_id=session_id)
        with _tracer.start_as_current_span("eventsub.reconcile") as span:
            span.set_attribute("eventsub.session_id", session_id)
            await self._remove_stale(result)
            for subscription_type in REDEMPTION_EVENT_TYPES:
                try:
                    descriptor = await self._client.create_subscription(
                        subscription_type,
                        version=SUBSCRIPTION_VERSION,
                        condition={"broadcaster_user_id": broadcaster_id},
                        session_id=session_id,
                    )
                except HelixRequestError as error:
                    result.degraded_types.append(subscription_type)
                    logger.error(
                        "EventSub subscription create failed; event type inactive until reconnect",
                        subscription_type=subscription_type,
                        session_id=session_id,
                        error=str(error),
                    )
                    continue
                result.created[subscription_type] = descriptor.id
            span.set_attribute("eventsub.degraded_types", len(result.degraded_types))

        self._observability.record_reconciliation(
            deleted=len(result.deleted),
            created=len(result.created),
            list_failed=result.list_failed,
            delete_failures=len(result.delete_failures),
            degraded_types=result.degraded_types,
        )
        if result.complete:
            logger.info(
                "EventSub subscriptions ready",
                session_id=session_id,
                deleted=len(result.deleted),
                created=sorted(result.created),
            )
        return result

    async def _remove_stale(self, result: ReconciliationResult) -> None:
        try:
            existing = await self._client.list_subscriptions()
        except HelixRequestError as error:
            result.list_failed = True
            logger.warning("EventSub subscription listing failed; stale subscriptions kept", error=str(error))
            return

        stale = [
            descriptor
            for descriptor in existing
            if descriptor.type in REDEMPTION_EVENT_TYPES and descriptor.method == WEBSOCKET_TRANSPORT
        ]
        for descriptor in stale:
            try:
                await self._client.delete_subscription(descriptor.id)
            except HelixRequestError as error:
                result.delete_failures.append(descriptor.id)
                logger.warning(
                    "EventSub subscription delete failed",
                    subscription_id=descriptor.id,
                    subscription_type=descriptor.type,
                    error=str(error),
                )
                continue
            result.deleted.append(descriptor.id)


__all__ = ["ReconciliationResult", "SUBSCRIPTION_VERSION", "SubscriptionReconciler"]
