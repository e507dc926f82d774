import sys
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from karma_api.app import create_app  # noqa: E402
from karma_api.db.base import Base  # noqa: E402
from karma_api.domain import LedgerBounds  # noqa: E402
from karma_api.observability.karma import get_karma_store  # noqa: E402
from karma_api.services.auth import OAuthStateStore, TwitchOAuthClient  # noqa: E402
from karma_api.services.broadcast import BroadcastPublisher  # noqa: E402
from karma_api.services.ledger import KarmaLedger  # noqa: E402
from karma_api.services.redemptions import RedemptionLifecycle  # noqa: E402
from karma_api.services.rewards import RewardResolver  # noqa: E402
from karma_api.services.storage import FileKarmaStore  # noqa: E402
import karma_api.models  # noqa: E402,F401


@pytest.fixture(autouse=True)
def reset_karma_observability():
    store = get_karma_store()
    store.reset()
    yield store
    store.reset()


@pytest.fixture
def bounds() -> LedgerBounds:
    return LedgerBounds(minimum=Decimal("-5"), maximum=Decimal("5"))


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_store(tmp_path, bounds):
    store = FileKarmaStore(tmp_path / "karma.json", bounds=bounds)
    await store.init()
    try:
        yield store
    finally:
        await store.close()


@pytest.fixture
def publisher() -> BroadcastPublisher:
    return BroadcastPublisher()


@pytest.fixture
def lifecycle(file_store, publisher) -> RedemptionLifecycle:
    return RedemptionLifecycle(
        store=file_store,
        resolver=RewardResolver({"heal": 0.25, "bleed": -0.25, "hydrate💧": 0.1}),
        ledger=KarmaLedger(file_store),
        publisher=publisher,
        broadcaster_id="1001",
    )


@pytest_asyncio.fixture
async def app_with_store(file_store, publisher):
    app = create_app()
    app.state.store = file_store
    app.state.ledger = KarmaLedger(file_store)
    app.state.publisher = publisher
    app.state.oauth = TwitchOAuthClient(
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://test/api/v1/auth/callback",
    )
    app.state.oauth_states = OAuthStateStore()
    app.state.eventsub = None

    try:
        yield app, file_store
    finally:
        await app.state.oauth.aclose()
