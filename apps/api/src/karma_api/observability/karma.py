from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Iterable


@dataclass
class KarmaSnapshot:
    redemptions: Dict[str, int]
    unmapped_titles: Dict[str, int]
    stream: Dict[str, int]
    subscriptions: Dict[str, int]
    degraded_subscription_types: list[str]
    last_reconciled_at: datetime | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "redemptions": dict(self.redemptions),
            "unmapped_titles": dict(self.unmapped_titles),
            "stream": dict(self.stream),
            "subscriptions": dict(self.subscriptions),
            "degraded_subscription_types": list(self.degraded_subscription_types),
            "last_reconciled_at": self.last_reconciled_at.isoformat() if self.last_reconciled_at else None,
        }


class KarmaObservabilityStore:
    """Collect redemption, stream and reconciliation telemetry for operators."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._unmapped: Dict[str, int] = defaultdict(int)
        self._stream: Dict[str, int] = defaultdict(int)
        self._subscriptions: Dict[str, int] = defaultdict(int)
        self._degraded: set[str] = set()
        self._last_reconciled_at: datetime | None = None

    def record_redemption_outcome(self, outcome: str) -> None:
        with self._lock:
            self._redemptions[outcome] += 1

    def record_unmapped_title(self, normalized_title: str) -> None:
        with self._lock:
            self._unmapped[normalized_title or "<empty>"] += 1

    def record_stream_event(self, event: str) -> None:
        with self._lock:
            self._stream[event] += 1

    def record_reconciliation(
        self,
        *,
        deleted: int,
        created: int,
        list_failed: bool,
        delete_failures: int,
        degraded_types: Iterable[str],
    ) -> None:
        with self._lock:
            self._subscriptions["runs"] += 1
            self._subscriptions["deleted"] += deleted
            self._subscriptions["created"] += created
            self._subscriptions["delete_failures"] += delete_failures
            if list_failed:
                self._subscriptions["list_failures"] += 1
            degraded = set(degraded_types)
            self._subscriptions["create_failures"] += len(degraded)
            self._degraded = degraded
            self._last_reconciled_at = datetime.now(timezone.utc)

    def snapshot(self) -> KarmaSnapshot:
        with self._lock:
            return KarmaSnapshot(
                redemptions=dict(self._redemptions),
                unmapped_titles=dict(self._unmapped),
                stream=dict(self._stream),
                subscriptions=dict(self._subscriptions),
                degraded_subscription_types=sorted(self._degraded),
                last_reconciled_at=self._last_reconciled_at,
            )

    def reset(self) -> None:
        with self._lock:
            self._redemptions.clear()
            self._unmapped.clear()
            self._stream.clear()
            self._subscriptions.clear()
            self._degraded = set()
            self._last_reconciled_at = None


_STORE = KarmaObservabilityStore()


def get_karma_store() -> KarmaObservabilityStore:
    return _STORE


__all__ = ["get_karma_store", "KarmaObservabilityStore", "KarmaSnapshot"]
