from __future__ import annotations

import logging

from fastapi import WebSocket

from natsuki_quest.api.models import StateEvent

logger = logging.getLogger(__name__)


class LoopEventHub:
    """Pushes StateEvents to the sockets a player has open.

    Events describe what changed (new loop, checkpoint, how a death was
    handled); clients fetch the full state over HTTP when they need it.
    Sockets live in this process only, so every API replica serves its own
    listeners.
    """

    def __init__(self) -> None:
        self._sockets: dict[str, list[WebSocket]] = {}

    def listeners(self, owner_id: str) -> int:
        return len(self._sockets.get(owner_id, ()))

    async def attach(self, owner_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._sockets.setdefault(owner_id, []).append(websocket)

    def detach(self, owner_id: str, websocket: WebSocket) -> None:
        sockets = self._sockets.get(owner_id, [])
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            self._sockets.pop(owner_id, None)

    async def publish(self, event: StateEvent) -> int:
        """Send `event` to every socket of its owner; returns how many got it."""

        payload = event.model_dump(mode="json")
        delivered = 0
        for ws in list(self._sockets.get(event.owner_id, ())):
            try:
                await ws.send_json(payload)
            except Exception as e:
                logger.debug("Detaching websocket for %s after failed send: %s", event.owner_id, e)
                self.detach(event.owner_id, ws)
                continue
            delivered += 1

        logger.debug("%s event for %s reached %s socket(s)", event.change.value, event.owner_id, delivered)
        return delivered


hub = LoopEventHub()
