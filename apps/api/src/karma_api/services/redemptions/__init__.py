"""Redemption lifecycle exports."""

from .lifecycle import RedemptionLifecycle, RedemptionOutcome  # noqa: F401
from .maintenance import RequeueSummary, requeue_pending_redemptions  # noqa: F401
