"""Core value types shared by the ledger, the stores and the redemption lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping

KARMA_QUANTUM = Decimal("0.001")

REDEMPTION_ADD_TYPE = "channel.channel_points_custom_reward_redemption.add"
REDEMPTION_UPDATE_TYPE = "channel.channel_points_custom_reward_redemption.update"
REDEMPTION_EVENT_TYPES = (REDEMPTION_ADD_TYPE, REDEMPTION_UPDATE_TYPE)


class RedemptionStatus(str, Enum):
    """Lifecycle status of a tracked redemption."""

    UNFULFILLED = "UNFULFILLED"
    FULFILLED = "FULFILLED"
    CANCELED = "CANCELED"

    @classmethod
    def parse(cls, value: object) -> "RedemptionStatus | None":
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return None


def to_decimal(value: object) -> Decimal:
    """Coerce numbers and numeric strings into a finite, quantized Decimal."""

    if isinstance(value, bool):
        raise ValueError("Boolean is not a karma amount")
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as error:
        raise ValueError(f"Invalid karma amount: {value!r}") from error
    if not number.is_finite():
        raise ValueError(f"Karma amount must be finite: {value!r}")
    try:
        return number.quantize(KARMA_QUANTUM)
    except InvalidOperation as error:
        raise ValueError(f"Karma amount out of range: {value!r}") from error


def normalize_user(user: str) -> str:
    """Ledger key for a display name: trimmed, whitespace collapsed, case folded."""

    return " ".join(str(user or "").split()).casefold()


@dataclass(frozen=True)
class LedgerBounds:
    """Inclusive clamp range applied after every ledger mutation."""

    minimum: Decimal
    maximum: Decimal

    def __post_init__(self) -> None:
        if self.minimum > self.maximum:
            raise ValueError("Ledger minimum must not exceed maximum")

    def clamp(self, value: Decimal) -> Decimal:
        return to_decimal(max(self.minimum, min(self.maximum, value)))


@dataclass(slots=True)
class RedemptionRecord:
    """Pending redemption awaiting a fulfilled/canceled resolution."""

    id: str
    user: str
    title: str
    delta: Decimal
    reward_id: str | None = None
    broadcaster_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: RedemptionStatus = RedemptionStatus.UNFULFILLED

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user": self.user,
            "title": self.title,
            "delta": str(self.delta),
            "reward_id": self.reward_id,
            "broadcaster_id": self.broadcaster_id,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RedemptionRecord":
        created_raw = payload.get("created_at")
        if isinstance(created_raw, datetime):
            created_at = created_raw
        elif created_raw:
            created_at = datetime.fromisoformat(str(created_raw))
        else:
            created_at = datetime.now(timezone.utc)
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            id=str(payload["id"]),
            user=str(payload.get("user") or ""),
            title=str(payload.get("title") or ""),
            delta=to_decimal(payload.get("delta", 0)),
            reward_id=payload.get("reward_id"),
            broadcaster_id=payload.get("broadcaster_id"),
            created_at=created_at,
            status=RedemptionStatus.parse(payload.get("status")) or RedemptionStatus.UNFULFILLED,
        )


__all__ = [
    "KARMA_QUANTUM",
    "REDEMPTION_ADD_TYPE",
    "REDEMPTION_EVENT_TYPES",
    "REDEMPTION_UPDATE_TYPE",
    "LedgerBounds",
    "RedemptionRecord",
    "RedemptionStatus",
    "normalize_user",
    "to_decimal",
]
