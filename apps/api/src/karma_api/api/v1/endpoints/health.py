from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from karma_api.core.settings import settings
from karma_api.observability.karma import get_karma_store
from karma_api.workers.eventsub_session import ConnectionState


router = APIRouter()

ComponentState = Literal["ready", "starting", "disabled", "error", "degraded"]


class ComponentStatus(BaseModel):
    status: ComponentState
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent success")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(request: Request) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}

    store = getattr(request.app.state, "store", None)
    if store is None:
        components["store"] = ComponentStatus(
            status="error",
            detail=f"Karma store '{settings.store_backend}' failed to initialize",
        )
    else:
        components["store"] = ComponentStatus(status="ready", detail=f"Backend {settings.store_backend}")

    bootstrapper = getattr(request.app.state, "eventsub", None)
    manager = bootstrapper.manager if bootstrapper is not None else None
    if not settings.eventsub_enabled:
        components["event_stream"] = ComponentStatus(status="disabled", detail="Event stream disabled via settings")
    elif manager is None:
        components["event_stream"] = ComponentStatus(
            status="disabled",
            detail=f"Authorize at {settings.base_url}/api/v1/auth/login",
        )
    else:
        state = manager.state
        if state is not None and state.connection_state == ConnectionState.OPEN:
            components["event_stream"] = ComponentStatus(status="ready", detail=f"Session {state.session_id}")
        else:
            components["event_stream"] = ComponentStatus(status="starting", detail="Connecting to event stream")

    snapshot = get_karma_store().snapshot()
    last_reconciled = snapshot.last_reconciled_at.isoformat() if snapshot.last_reconciled_at else None
    if manager is None:
        components["subscriptions"] = ComponentStatus(status="disabled", detail="Event stream not running")
    elif snapshot.degraded_subscription_types:
        components["subscriptions"] = ComponentStatus(
            status="degraded",
            detail=f"Missing subscriptions: {', '.join(snapshot.degraded_subscription_types)}",
            last_success_at=last_reconciled,
        )
    elif last_reconciled is None:
        components["subscriptions"] = ComponentStatus(status="starting", detail="Awaiting session welcome")
    else:
        components["subscriptions"] = ComponentStatus(status="ready", last_success_at=last_reconciled)

    status: Literal["ready", "degraded", "error"] = "ready"
    if any(component.status == "error" for component in components.values()):
        status = "error"
    elif any(component.status in ("degraded", "starting") for component in components.values()):
        status = "degraded"
    return ReadinessPayload(status=status, components=components)
