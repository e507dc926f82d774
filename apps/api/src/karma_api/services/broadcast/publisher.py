"""In-process fan-out of karma changes to connected overlay observers."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator

from loguru import logger

KARMA_UPDATE_EVENT = "karma:update"


@dataclass(frozen=True, slots=True)
class KarmaUpdateEvent:
    user: str
    new_value: Decimal
    delta: Decimal
    source: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_payload(self) -> dict[str, object]:
        return {
            "user": self.user,
            "newValue": float(self.new_value),
            "delta": float(self.delta),
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
        }

    def as_message(self) -> dict[str, object]:
        return {"event": KARMA_UPDATE_EVENT, "data": self.as_payload()}


class BroadcastPublisher:
    """Fire-and-forget publisher; observers only see events emitted while connected."""

    def __init__(self, *, buffer_size: int = 64) -> None:
        self._buffer_size = buffer_size
        self._subscribers: set[asyncio.Queue[KarmaUpdateEvent]] = set()
        self.dropped: int = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue[KarmaUpdateEvent]]:
        queue: asyncio.Queue[KarmaUpdateEvent] = asyncio.Queue(maxsize=self._buffer_size)
        self._subscribers.add(queue)
        try:
            yield queue
        finally:
            self._subscribers.discard(queue)

    def publish(self, user: str, new_value: Decimal, delta: Decimal, source: str) -> KarmaUpdateEvent:
        event = KarmaUpdateEvent(user=user, new_value=new_value, delta=delta, source=source)
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1
        logger.info(
            "Karma update published",
            user=user,
            delta=str(delta),
            value=str(new_value),
            source=source,
            observers=len(self._subscribers),
        )
        return event


__all__ = ["BroadcastPublisher", "KARMA_UPDATE_EVENT", "KarmaUpdateEvent"]
