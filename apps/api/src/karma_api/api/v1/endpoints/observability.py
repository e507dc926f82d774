"""Observability endpoints for redemption, stream and subscription counters."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from karma_api.api.dependencies.security import require_admin_key
from karma_api.observability.karma import get_karma_store


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_admin_key)],
)


@router.get("/karma", summary="Karma observability snapshot")
async def get_karma_snapshot(request: Request) -> dict[str, object]:
    """Counters snapshot plus the live observer count (requires admin key)."""
    payload = get_karma_store().snapshot().as_dict()
    publisher = getattr(request.app.state, "publisher", None)
    payload["broadcast"] = {
        "observers": publisher.subscriber_count if publisher else 0,
        "dropped": publisher.dropped if publisher else 0,
    }
    return payload


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{_escape(val)}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


@router.get(
    "/prometheus",
    summary="Prometheus-formatted observability metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics(request: Request) -> PlainTextResponse:
    snapshot = get_karma_store().snapshot().as_dict()
    lines: list[str] = []

    for outcome, value in sorted(snapshot["redemptions"].items()):
        lines.extend(
            _format_metric(
                "karma_redemption_notifications_total",
                "Redemption notifications grouped by outcome",
                value,
                labels={"outcome": outcome},
            )
        )

    for title, value in sorted(snapshot["unmapped_titles"].items()):
        lines.extend(
            _format_metric(
                "karma_unmapped_reward_total",
                "Redemptions of rewards with no karma mapping, grouped by normalized title",
                value,
                labels={"title": title},
            )
        )

    for event, value in sorted(snapshot["stream"].items()):
        lines.extend(
            _format_metric(
                "karma_eventsub_stream_events_total",
                "EventSub transport events",
                value,
                labels={"event": event},
            )
        )

    subscriptions = snapshot["subscriptions"]
    for key in ("runs", "deleted", "created", "list_failures", "delete_failures", "create_failures"):
        lines.extend(
            _format_metric(
                f"karma_eventsub_reconcile_{key}_total",
                f"EventSub reconciliation {key.replace('_', ' ')}",
                subscriptions.get(key, 0),
            )
        )
    lines.extend(
        _format_metric(
            "karma_eventsub_degraded_subscription_types",
            "Redemption event types without an active subscription",
            len(snapshot["degraded_subscription_types"]),
        )
    )

    publisher = getattr(request.app.state, "publisher", None)
    lines.extend(
        _format_metric(
            "karma_broadcast_observers",
            "Connected overlay observers",
            publisher.subscriber_count if publisher else 0,
        )
    )
    lines.extend(
        _format_metric(
            "karma_broadcast_dropped_total",
            "Updates dropped for observers that fell behind",
            publisher.dropped if publisher else 0,
        )
    )

    return PlainTextResponse("\n".join(lines) + "\n")
