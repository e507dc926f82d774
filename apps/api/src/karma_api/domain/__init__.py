"""Karma domain value types."""

from .karma import (  # noqa: F401
    KARMA_QUANTUM,
    REDEMPTION_ADD_TYPE,
    REDEMPTION_EVENT_TYPES,
    REDEMPTION_UPDATE_TYPE,
    LedgerBounds,
    RedemptionRecord,
    RedemptionStatus,
    normalize_user,
    to_decimal,
)
