"""Persistence boundary consumed by the ledger, the redemption lifecycle and the token bootstrap."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Protocol

from karma_api.domain import RedemptionRecord


class StoreError(RuntimeError):
    """Raised when a persistence backend fails to complete an operation."""


class StoreConfigurationError(StoreError):
    """Raised when the selected backend is missing required configuration."""


class KarmaStore(Protocol):
    """Minimal protocol every persistence backend implements.

    ``apply_delta`` must be a single constrained read-modify-write: concurrent
    calls for the same user may not lose updates and the stored value must
    always land inside the configured bounds.
    """

    async def init(self) -> None:
        """Prepare backing storage (create files/tables)."""

    async def close(self) -> None:
        """Release connections and handles."""

    async def get_all(self) -> dict[str, Decimal]:
        ...

    async def get_user(self, user: str) -> Decimal:
        ...

    async def apply_delta(self, user: str, delta: Decimal) -> Decimal:
        ...

    async def set_user(self, user: str, value: Decimal) -> Decimal:
        ...

    async def save_tokens(self, tokens: Mapping[str, Any]) -> None:
        ...

    async def load_tokens(self) -> dict[str, Any] | None:
        ...

    async def pending_add(self, record: RedemptionRecord) -> None:
        ...

    async def pending_get(self, redemption_id: str) -> RedemptionRecord | None:
        ...

    async def pending_all(self) -> dict[str, RedemptionRecord]:
        ...

    async def pending_delete(self, redemption_id: str) -> None:
        ...


__all__ = ["KarmaStore", "StoreConfigurationError", "StoreError"]
