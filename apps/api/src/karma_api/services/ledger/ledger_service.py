"""Bounded per-user karma ledger on top of a pluggable store."""

from __future__ import annotations

from decimal import Decimal

from loguru import logger

from karma_api.domain import normalize_user, to_decimal
from karma_api.services.storage import KarmaStore


class KarmaLedger:
    """Normalizes user keys and amounts, then delegates to the store's atomic primitives.

    Clamping happens inside the store so that concurrent writers (redemption
    resolution and admin corrections) never observe an out-of-bounds value.
    """

    def __init__(self, store: KarmaStore) -> None:
        self._store = store

    async def apply_delta(self, user: str, delta: object) -> Decimal:
        key = self._key(user)
        amount = to_decimal(delta)
        value = await self._store.apply_delta(key, amount)
        logger.debug("Karma delta applied", user=key, delta=str(amount), value=str(value))
        return value

    async def set_user(self, user: str, value: object) -> Decimal:
        key = self._key(user)
        stored = await self._store.set_user(key, to_decimal(value))
        logger.info("Karma value overwritten", user=key, value=str(stored))
        return stored

    async def get_user(self, user: str) -> Decimal:
        return await self._store.get_user(self._key(user))

    async def get_all(self) -> dict[str, Decimal]:
        return await self._store.get_all()

    @staticmethod
    def _key(user: str) -> str:
        key = normalize_user(user)
        if not key:
            raise ValueError("User identifier must not be blank")
        return key


__all__ = ["KarmaLedger"]
