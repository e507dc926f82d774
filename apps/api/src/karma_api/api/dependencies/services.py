"""Resolve the service objects assembled by the application lifespan."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from karma_api.services.broadcast import BroadcastPublisher
from karma_api.services.eventsub.bootstrap import EventSubBootstrapper
from karma_api.services.ledger import KarmaLedger
from karma_api.services.storage import KarmaStore


def _unavailable(component: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"{component} unavailable",
    )


def get_store(request: Request) -> KarmaStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise _unavailable("Karma store")
    return store


def get_ledger(request: Request) -> KarmaLedger:
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        raise _unavailable("Karma ledger")
    return ledger


def get_publisher(request: Request) -> BroadcastPublisher:
    return request.app.state.publisher


def get_bootstrapper(request: Request) -> EventSubBootstrapper:
    bootstrapper = getattr(request.app.state, "eventsub", None)
    if bootstrapper is None:
        raise _unavailable("Event stream")
    return bootstrapper
