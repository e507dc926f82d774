import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from karma_api.core.settings import settings
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.auth import OAuthStateStore, TwitchOAuthClient
from .services.broadcast import BroadcastPublisher
from .services.eventsub.bootstrap import EventSubBootstrapper
from .services.ledger import KarmaLedger
from .services.redemptions import RedemptionLifecycle
from .services.rewards import RewardResolver
from .services.storage import KarmaStore, StoreError, create_store


APP_VERSION = "0.1.0"


async def _open_store() -> KarmaStore | None:
    try:
        store = create_store(settings)
        await store.init()
    except StoreError as exc:
        logger.error(
            "Karma store unavailable; ledger endpoints will answer 503",
            backend=settings.store_backend,
            error=str(exc),
        )
        return None
    return store


@asynccontextmanager
async def lifespan(app: FastAPI):
    publisher = BroadcastPublisher()
    resolver = RewardResolver.from_json(settings.reward_map_json)
    oauth = TwitchOAuthClient(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=settings.oauth_redirect_uri,
        base_url=settings.oauth_base_url,
        timeout_seconds=settings.http_timeout_seconds,
    )
    store = await _open_store()

    app.state.publisher = publisher
    app.state.oauth = oauth
    app.state.oauth_states = OAuthStateStore()
    app.state.store = store
    app.state.ledger = KarmaLedger(store) if store is not None else None
    app.state.eventsub = None

    boot_task: asyncio.Task | None = None
    if store is not None and settings.eventsub_enabled:
        lifecycle = RedemptionLifecycle(
            store=store,
            resolver=resolver,
            ledger=app.state.ledger,
            publisher=publisher,
        )
        bootstrapper = EventSubBootstrapper(
            store=store,
            oauth=oauth,
            lifecycle=lifecycle,
            client_id=settings.client_id,
            login_url=f"{settings.base_url}/api/v1/auth/login",
            helix_base_url=settings.helix_base_url,
            eventsub_url=settings.eventsub_ws_url,
            reconnect_delay_seconds=settings.eventsub_reconnect_delay_seconds,
            timeout_seconds=settings.http_timeout_seconds,
        )
        app.state.eventsub = bootstrapper
        boot_task = asyncio.create_task(bootstrapper.boot())
        logger.info("Event stream enabled", url=settings.eventsub_ws_url)
    else:
        logger.info(
            "Event stream disabled",
            reason="store unavailable" if store is None else "eventsub_enabled is false",
        )

    try:
        yield
    finally:
        if boot_task and not boot_task.done():
            boot_task.cancel()
            await asyncio.gather(boot_task, return_exceptions=True)
        if app.state.eventsub is not None:
            await app.state.eventsub.stop()
        await oauth.aclose()
        if store is not None:
            await store.close()


def create_app() -> FastAPI:
    """Application factory for the karma service."""
    configure_logging(
        service_name="karma-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Karma API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="karma-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router)

    return app
