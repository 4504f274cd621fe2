"""No-op transport for offline use and tests."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from vitrus.errors import TransportClosed
from vitrus.network.transport.base import BaseTransport

LOGGER = logging.getLogger(__name__)


class DummyTransport(BaseTransport):
    """Transport that accepts every frame and never receives one until closed."""

    def __init__(self, settings=None, url: str = "") -> None:
        self._settings = settings
        self._url = url
        self._closed = asyncio.Event()
        self._open = False

    async def connect(self) -> None:
        LOGGER.debug("Dummy transport connect() url=%s", self._url)
        self._open = True
        self._closed.clear()

    async def send(self, message: dict[str, Any]) -> None:
        LOGGER.debug("Dummy transport send(): %s", message)

    async def receive(self) -> str | bytes:
        await self._closed.wait()
        raise TransportClosed("Dummy transport closed")

    async def close(self) -> None:
        LOGGER.debug("Dummy transport close()")
        self._open = False
        self._closed.set()

    @property
    def is_open(self) -> bool:
        return self._open
