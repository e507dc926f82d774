"""Websocket fan-out of live karma updates to overlay observers."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket
from loguru import logger

from karma_api.services.broadcast import BroadcastPublisher, KarmaUpdateEvent


router = APIRouter(tags=["Broadcast"])


async def _forward(websocket: WebSocket, queue: asyncio.Queue[KarmaUpdateEvent]) -> None:
    while True:
        event = await queue.get()
        await websocket.send_json(event.as_message())


@router.websocket("/ws/karma")
async def karma_updates(websocket: WebSocket) -> None:
    publisher: BroadcastPublisher = websocket.app.state.publisher
    async with publisher.subscribe() as queue:
        await websocket.accept()
        logger.debug("Overlay observer connected", observers=publisher.subscriber_count)
        forwarder = asyncio.create_task(_forward(websocket, queue))
        try:
            # Observers never send anything; reading only detects the disconnect.
            async for _ in websocket.iter_text():
                pass
        finally:
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)
    logger.debug("Overlay observer disconnected", observers=publisher.subscriber_count)
