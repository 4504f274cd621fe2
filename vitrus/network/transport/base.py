"""Transport abstractions for the orchestration service connection."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class BaseTransport(ABC):
    """Abstract WebSocket-like duplex transport owned by the ConnectionManager."""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def receive(self) -> str | bytes:
        """Return the next raw text frame; raise TransportClosed once the peer closes."""

    @abstractmethod
    async def close(self) -> None:
        ...

    @property
    def is_open(self) -> bool:
        return True
