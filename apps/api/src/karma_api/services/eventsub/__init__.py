"""EventSub subscription management."""

from .helix import (  # noqa: F401
    WEBSOCKET_TRANSPORT,
    HelixEventSubClient,
    HelixRequestError,
    SubscriptionDescriptor,
)
from .reconciler import SUBSCRIPTION_VERSION, ReconciliationResult, SubscriptionReconciler  # noqa: F401
