import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import pytest

from vitrus.config import VitrusSettings
from vitrus.errors import TransportClosed
from vitrus.network.transport.dummy import DummyTransport

_CLOSED = object()

Responder = Callable[[Dict[str, Any]], Optional[List[Any]]]


def accept_handshake(message: Dict[str, Any]) -> Optional[List[Any]]:
    if message.get("type") != "HANDSHAKE":
        return None
    return [
        {
            "type": "HANDSHAKE_RESPONSE",
            "success": True,
            "clientId": f"client-{message.get('actorName') or 'agent'}",
            "redisChannel": "channel-1",
        }
    ]


class ScriptedTransport(DummyTransport):
    """In-memory transport: records outbound frames, replays scripted inbound ones."""

    def __init__(self, settings=None, url: str = "", responder: Optional[Responder] = accept_handshake) -> None:
        super().__init__(settings, url)
        self.url = url
        self.sent: List[Dict[str, Any]] = []
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.responder = responder

    async def send(self, message: Dict[str, Any]) -> None:
        if not self.is_open:
            raise TransportClosed("send on closed transport")
        # Round-trip through JSON so tests see exactly what goes on the wire.
        self.sent.append(json.loads(json.dumps(message)))
        replies = self.responder(message) if self.responder else None
        for reply in replies or []:
            self.push(reply)

    async def receive(self) -> str | bytes:
        item = await self.inbound.get()
        if item is _CLOSED:
            raise TransportClosed("peer closed", code=1006)
        if isinstance(item, (str, bytes)):
            return item
        return json.dumps(item)

    async def close(self) -> None:
        await super().close()
        self.inbound.put_nowait(_CLOSED)

    def push(self, frame: Any) -> None:
        self.inbound.put_nowait(frame)

    def drop(self) -> None:
        """Simulate the peer closing the socket."""

        self._open = False
        self.inbound.put_nowait(_CLOSED)

    def sever(self) -> None:
        """Simulate a dead socket whose close has not reached the receive loop yet."""

        self._open = False

    def sent_of(self, frame_type: str) -> List[Dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == frame_type]


class TransportRecorder:
    """Transport factory that keeps every transport it created."""

    def __init__(self, responder: Optional[Responder] = accept_handshake) -> None:
        self.responder = responder
        self.created: List[ScriptedTransport] = []

    def __call__(self, settings: VitrusSettings, url: str) -> ScriptedTransport:
        transport = ScriptedTransport(settings, url, responder=self.responder)
        self.created.append(transport)
        return transport

    @property
    def current(self) -> ScriptedTransport:
        return self.created[-1]


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def settings() -> VitrusSettings:
    return VitrusSettings(
        api_key="test-key",
        world_id="world-1",
        base_url="ws://vitrus.test:3001",
        handshake_timeout_seconds=1.0,
    )


@pytest.fixture
def transports() -> TransportRecorder:
    return TransportRecorder()


@pytest.fixture
def helpers():
    class _Helpers:
        ScriptedTransport = ScriptedTransport
        TransportRecorder = TransportRecorder
        accept_handshake = staticmethod(accept_handshake)
        settle = staticmethod(settle)
        wait_until = staticmethod(wait_until)

    return _Helpers
