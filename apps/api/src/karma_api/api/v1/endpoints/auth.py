"""Broadcaster authorization: redirect to the identity provider and handle its callback."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from loguru import logger

from karma_api.api.dependencies.services import get_bootstrapper
from karma_api.services.auth import OAuthError, OAuthStateStore, TwitchOAuthClient
from karma_api.services.eventsub import HelixRequestError
from karma_api.services.eventsub.bootstrap import EventSubBootstrapper
from karma_api.services.storage import StoreError


router = APIRouter(prefix="/auth", tags=["Auth"])


def _oauth(request: Request) -> TwitchOAuthClient:
    oauth: TwitchOAuthClient | None = getattr(request.app.state, "oauth", None)
    if oauth is None or not oauth.configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Missing CLIENT_ID/CLIENT_SECRET",
        )
    return oauth


def _states(request: Request) -> OAuthStateStore:
    return request.app.state.oauth_states


@router.get("/login", summary="Start broadcaster authorization")
async def login(
    oauth: TwitchOAuthClient = Depends(_oauth),
    states: OAuthStateStore = Depends(_states),
) -> RedirectResponse:
    return RedirectResponse(oauth.authorize_url(states.issue()), status_code=status.HTTP_302_FOUND)


@router.get(
    "/callback",
    response_class=HTMLResponse,
    dependencies=[Depends(_oauth)],
    summary="Authorization callback",
)
async def callback(
    code: str | None = None,
    state: str | None = None,
    states: OAuthStateStore = Depends(_states),
    bootstrapper: EventSubBootstrapper = Depends(get_bootstrapper),
) -> HTMLResponse:
    if not code:
        return HTMLResponse("<h1>Missing code</h1>", status_code=status.HTTP_400_BAD_REQUEST)
    if not states.consume(state):
        return HTMLResponse("<h1>Invalid state</h1>", status_code=status.HTTP_400_BAD_REQUEST)
    try:
        tokens = await bootstrapper.authorize(code)
    except (OAuthError, HelixRequestError, StoreError) as error:
        logger.error("Broadcaster authorization failed", error=str(error))
        return HTMLResponse("<h1>Auth error</h1>", status_code=status.HTTP_502_BAD_GATEWAY)
    logger.info(
        "Broadcaster authorized",
        broadcaster_login=tokens.get("broadcaster_login"),
        broadcaster_id=tokens.get("broadcaster_id"),
    )
    return HTMLResponse("<h1>Auth successful</h1>")
