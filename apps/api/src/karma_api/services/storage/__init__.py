"""Karma persistence backends and the startup-time backend selection."""

from __future__ import annotations

from loguru import logger

from karma_api.core.settings import Settings
from karma_api.db.session import build_session_factory
from karma_api.domain import LedgerBounds

from .base import KarmaStore, StoreConfigurationError, StoreError
from .file_store import FileKarmaStore
from .hosted import HostedKarmaStore
from .relational import RelationalKarmaStore


def ledger_bounds(config: Settings) -> LedgerBounds:
    return LedgerBounds(minimum=config.karma_min, maximum=config.karma_max)


def create_store(config: Settings) -> KarmaStore:
    """Build the backend named by ``STORE_BACKEND``; the choice is made once, here."""

    bounds = ledger_bounds(config)
    backend = config.store_backend
    if backend == "file":
        store: KarmaStore = FileKarmaStore(config.karma_data_path, bounds=bounds)
    elif backend == "relational":
        engine, factory = build_session_factory(config.database_url)
        store = RelationalKarmaStore(factory, bounds=bounds, engine=engine)
    elif backend == "hosted":
        store = HostedKarmaStore(
            base_url=config.supabase_url,
            service_key=config.supabase_key,
            bounds=bounds,
            timeout_seconds=config.http_timeout_seconds,
        )
    else:
        raise StoreConfigurationError(f"Unknown STORE_BACKEND '{backend}'")
    logger.info("Karma store selected", backend=backend, minimum=str(bounds.minimum), maximum=str(bounds.maximum))
    return store


__all__ = [
    "FileKarmaStore",
    "HostedKarmaStore",
    "KarmaStore",
    "RelationalKarmaStore",
    "StoreConfigurationError",
    "StoreError",
    "create_store",
    "ledger_bounds",
]
