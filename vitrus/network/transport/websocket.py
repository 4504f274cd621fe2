"""WebSocket transport implementation."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from vitrus.config import VitrusSettings
from vitrus.errors import TransportClosed, TransportNotReady
from vitrus.network.transport.base import BaseTransport

LOGGER = logging.getLogger(__name__)


class WebSocketTransport(BaseTransport):
    """Text-frame WebSocket transport to the orchestration service."""

    def __init__(self, settings: VitrusSettings, url: str) -> None:
        self._settings = settings
        self._url = url
        self._ws: Optional[ClientConnection] = None

    async def connect(self) -> None:
        LOGGER.info("Connecting to Vitrus WebSocket at %s", str(self._settings.base_url))
        self._ws = await connect(self._url, open_timeout=self._settings.open_timeout_seconds)

    async def send(self, message: dict[str, Any]) -> None:
        if not self._ws:
            raise TransportNotReady("WebSocket transport not connected")
        payload = json.dumps(jsonable_encoder(message))
        LOGGER.debug("WebSocket send: %s frame", message.get("type"))
        try:
            await self._ws.send(payload)
        except ConnectionClosed as exc:
            raise TransportClosed(str(exc), code=exc.rcvd.code if exc.rcvd else None) from exc

    async def receive(self) -> str | bytes:
        if not self._ws:
            raise TransportNotReady("WebSocket transport not connected")
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as exc:
            raise TransportClosed(str(exc), code=exc.rcvd.code if exc.rcvd else None) from exc
        LOGGER.debug("WebSocket receive: %s", raw)
        return raw

    async def close(self) -> None:
        if self._ws:
            LOGGER.info("Closing WebSocket transport")
            await self._ws.close()
            self._ws = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN
