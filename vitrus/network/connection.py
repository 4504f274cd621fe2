"""Connection manager: transport lifecycle plus the authentication handshake.

This layer is responsible for:
- Opening and closing the single duplex transport
- Driving DISCONNECTED → CONNECTING → OPEN → AUTHENTICATING → READY
- Sending HANDSHAKE and awaiting HANDSHAKE_RESPONSE
- Feeding inbound frames to the MessageRouter
- Reporting connection loss so pending requests can be rejected
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel

from vitrus.config import VitrusSettings
from vitrus.errors import (
    AuthenticationError,
    ConnectionError,
    ConnectionLost,
    TransportClosed,
    TransportNotReady,
)
from vitrus.models.errors import describe_handshake_error
from vitrus.models.frames import ActorInfo, HandshakeFrame, HandshakeResponseFrame, encode_frame
from vitrus.network.router import MessageRouter, Subscription
from vitrus.network.session_state import AGENT, ActorIdentity, ConnectionPhase, ConnectionTracker
from vitrus.network.transport.base import BaseTransport

LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[[VitrusSettings, str], BaseTransport]

MAX_CONSECUTIVE_RECEIVE_ERRORS = 3
RECEIVE_ERROR_BACKOFF_SECONDS = 0.05


def _no_metadata(_actor_name: str) -> Dict[str, Any]:
    return {}


def classify_error(exc: BaseException) -> str:
    status_code = getattr(exc, "status_code", None)
    if status_code is None:
        status_code = getattr(exc, "code", None)
    if status_code in {401, 403}:
        return "auth"
    if status_code in {400, 404, 426}:
        return "protocol"
    message = str(exc).lower()
    if any(token in message for token in ("unauthorized", "forbidden", "invalid token", "api key")):
        return "auth"
    if any(token in message for token in ("protocol", "handshake", "invalid status", "unsupported")):
        return "protocol"
    if any(token in message for token in ("timeout", "timed out", "refused", "unreachable", "reset", "closed")):
        return "network"
    return "unknown"


@dataclass
class ConnectionManager:
    """Owns the transport and brings the session to READY."""

    settings: VitrusSettings
    transport_factory: TransportFactory
    router: MessageRouter
    metadata_for: Callable[[str], Dict[str, Any]] = field(default_factory=lambda: _no_metadata)
    on_actor_info: Optional[Callable[[str, ActorInfo], None]] = None
    on_ready: Optional[Callable[[ActorIdentity], Awaitable[None]]] = None
    on_lost: Optional[Callable[[Exception], None]] = None
    tracker: ConnectionTracker = field(default_factory=ConnectionTracker)

    _transport: Optional[BaseTransport] = field(default=None, init=False, repr=False)
    _receive_task: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)
    _connect_task: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)
    _auth_subscription: Optional[Subscription] = field(default=None, init=False, repr=False)
    _last_error_type: Optional[str] = field(default=None, init=False, repr=False)

    @property
    def phase(self) -> ConnectionPhase:
        return self.tracker.phase

    @property
    def ready(self) -> bool:
        transport = self._transport
        return self.tracker.authenticated and transport is not None and transport.is_open

    def last_error_type(self) -> Optional[str]:
        return self._last_error_type

    async def connect(self, identity: Optional[ActorIdentity] = None) -> None:
        """Bring the session to READY as ``identity``; concurrent callers share one attempt."""

        identity = identity or AGENT
        while True:
            task = self._connect_task
            if task and not task.done():
                await asyncio.shield(task)
                if self.tracker.authenticated_as(identity.name):
                    return
                continue
            if self.tracker.phase is ConnectionPhase.READY:
                if not self.ready:
                    LOGGER.info("Transport closed under a ready session, reconnecting")
                    await self._teardown(ConnectionLost("Connection closed unexpectedly"))
                elif self.tracker.authenticated_as(identity.name):
                    return
                else:
                    LOGGER.info(
                        "Re-authenticating as %s (was %s)",
                        identity.name or "agent",
                        (self.tracker.identity.name if self.tracker.identity else None) or "agent",
                    )
                    await self._teardown(ConnectionLost("Session re-authenticating with a different identity"))
            task = asyncio.create_task(self._connect(identity), name="vitrus-connect")
            self._connect_task = task
            try:
                await asyncio.shield(task)
            finally:
                if self._connect_task is task and task.done():
                    self._connect_task = None
            return

    async def send(self, frame: BaseModel) -> None:
        """Serialise and send one frame over the open transport."""

        transport = self._transport
        if transport is None or not transport.is_open:
            raise TransportNotReady("Not connected to the Vitrus service")
        message = encode_frame(frame)
        LOGGER.debug("Sending %s frame", message.get("type"))
        await transport.send(message)

    async def close(self) -> None:
        """Close the transport; pending requests are rejected with ConnectionLost."""

        task = self._connect_task
        if task and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        self._connect_task = None
        await self._teardown(ConnectionLost("Session closed"))

    # Connect path ----------------------------------------------------------
    async def _connect(self, identity: ActorIdentity) -> None:
        self._try_transition(ConnectionPhase.CONNECTING)
        self.tracker.reset()
        self.tracker.identity = identity
        url = self.build_url(identity)
        transport = self.transport_factory(self.settings, url)
        try:
            await transport.connect()
        except asyncio.CancelledError:
            await self._abort(transport)
            raise
        except Exception as exc:  # noqa: BLE001
            self._last_error_type = classify_error(exc)
            LOGGER.warning("Transport connect failed: %s", exc)
            await self._abort(transport)
            raise ConnectionError(
                f"Failed to connect to {self.settings.base_url}: {exc}",
                stage="connecting",
                error_type=self._last_error_type,
            ) from exc

        self._transport = transport
        self._try_transition(ConnectionPhase.OPEN)
        subscription = self.router.subscribe_once("HANDSHAKE_RESPONSE")
        self._auth_subscription = subscription
        self._receive_task = asyncio.create_task(self._receive_loop(transport), name="vitrus-receive")
        try:
            await self.send(self._build_handshake(identity))
            self._try_transition(ConnectionPhase.AUTHENTICATING)
            LOGGER.debug("Waiting for authentication as %s", identity.name or "agent")
            response = await self._await_handshake(subscription)
            if self._transport is not transport or not transport.is_open:
                raise ConnectionError(
                    "Connection closed right after HANDSHAKE_RESPONSE",
                    stage="authenticating",
                    error_type="network",
                )
            self._accept(identity, response)
        except asyncio.CancelledError:
            await self._abort(transport)
            raise
        except ConnectionError:
            await self._abort(transport)
            raise
        except Exception as exc:  # noqa: BLE001
            self._last_error_type = classify_error(exc)
            stage = self.tracker.phase.value.lower()
            await self._abort(transport)
            raise ConnectionError(
                f"Connection failed during {stage}: {exc}",
                stage=stage,
                error_type=self._last_error_type,
            ) from exc
        finally:
            self._auth_subscription = None

        LOGGER.info("Authenticated as %s clientId=%s", identity.name or "agent", self.tracker.client_id)
        if self.on_ready:
            try:
                await self.on_ready(identity)
            except Exception:  # noqa: BLE001
                LOGGER.warning("Post-authentication hook failed", exc_info=True)

    async def _await_handshake(self, subscription: Subscription) -> HandshakeResponseFrame:
        timeout = float(self.settings.handshake_timeout_seconds)
        try:
            frame = await subscription.wait(timeout=timeout)
        except asyncio.TimeoutError as exc:
            self._last_error_type = "protocol"
            raise ConnectionError(
                f"Timed out after {timeout:.0f}s waiting for HANDSHAKE_RESPONSE",
                stage="authenticating",
                error_type="protocol",
            ) from exc
        if not isinstance(frame, HandshakeResponseFrame):
            raise ConnectionError(
                f"Unexpected {frame.type} frame in place of HANDSHAKE_RESPONSE",
                stage="authenticating",
                error_type="protocol",
            )
        return frame

    def _accept(self, identity: ActorIdentity, response: HandshakeResponseFrame) -> None:
        if not response.success:
            message = describe_handshake_error(response.error_code, response.message, self.settings.world_id)
            LOGGER.warning("Authentication failed (%s): %s", response.error_code or "no code", message)
            self._last_error_type = "auth"
            raise AuthenticationError(message, error_code=response.error_code)
        if not response.client_id:
            raise ConnectionError(
                "HANDSHAKE_RESPONSE reported success without a clientId",
                stage="authenticating",
                error_type="protocol",
            )
        self.tracker.client_id = response.client_id
        self.tracker.channel = response.redis_channel
        self._last_error_type = None
        self._try_transition(ConnectionPhase.READY)
        if response.actor_info is not None and identity.is_actor and self.on_actor_info:
            self.on_actor_info(identity.name, response.actor_info)  # type: ignore[arg-type]

    def _build_handshake(self, identity: ActorIdentity) -> HandshakeFrame:
        metadata = self.metadata_for(identity.name) if identity.is_actor else None
        return HandshakeFrame(
            api_key=self.settings.api_key or "",
            world_id=self.settings.world_id,
            actor_name=identity.name,
            metadata=metadata,
        )

    def build_url(self, identity: ActorIdentity) -> str:
        parts = urlsplit(str(self.settings.base_url))
        query = parse_qsl(parts.query, keep_blank_values=True)
        query.append(("apiKey", self.settings.api_key or ""))
        if self.settings.world_id:
            query.append(("worldId", self.settings.world_id))
        if identity.is_actor:
            query.append(("actorName", identity.name or ""))
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

    async def _abort(self, transport: BaseTransport) -> None:
        if self._auth_subscription is not None:
            self._auth_subscription.close()
            self._auth_subscription = None
        await self._stop_receive()
        if self._transport is transport:
            self._transport = None
        await self._close_quietly(transport)
        self.tracker.reset()
        self._try_transition(ConnectionPhase.FAILED)

    # Inbound path ----------------------------------------------------------
    async def _receive_loop(self, transport: BaseTransport) -> None:
        failures = 0
        try:
            while True:
                try:
                    raw = await transport.receive()
                except asyncio.CancelledError:
                    raise
                except TransportClosed as exc:
                    self._on_closed(transport, exc)
                    return
                except Exception as exc:  # noqa: BLE001
                    self._last_error_type = classify_error(exc)
                    if not transport.is_open or self.tracker.phase is not ConnectionPhase.READY:
                        self._on_closed(transport, exc)
                        return
                    failures += 1
                    if failures >= MAX_CONSECUTIVE_RECEIVE_ERRORS:
                        LOGGER.error("Giving up on transport after %s consecutive errors: %s", failures, exc)
                        self._on_closed(transport, exc)
                        await self._close_quietly(transport)
                        return
                    LOGGER.warning(
                        "Transport error on a ready session (%s/%s): %s",
                        failures,
                        MAX_CONSECUTIVE_RECEIVE_ERRORS,
                        exc,
                    )
                    await asyncio.sleep(RECEIVE_ERROR_BACKOFF_SECONDS * failures)
                    continue
                failures = 0
                try:
                    await self.router.route_raw(raw)
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Failed to route inbound frame")
        except asyncio.CancelledError:
            LOGGER.debug("Receive loop cancelled")
            raise

    def _on_closed(self, transport: BaseTransport, exc: BaseException) -> None:
        if transport is not self._transport:
            return
        phase = self.tracker.phase
        if phase is ConnectionPhase.READY:
            LOGGER.warning("Connection to the Vitrus service lost: %s", exc)
            self._transport = None
            self._receive_task = None
            self.tracker.reset()
            self._try_transition(ConnectionPhase.DISCONNECTED)
            if self.on_lost:
                self.on_lost(ConnectionLost(f"Connection closed unexpectedly: {exc}"))
            return
        stage = phase.value.lower()
        LOGGER.warning("Connection closed during %s: %s", stage, exc)
        # The handshake may already be answered; _connect checks this before READY.
        self._transport = None
        subscription = self._auth_subscription
        if subscription is not None and subscription.future is not None and not subscription.future.done():
            subscription.future.set_exception(
                ConnectionError(
                    f"Connection closed before authentication completed: {exc}",
                    stage=stage,
                    error_type=self._last_error_type or classify_error(exc),
                )
            )

    # Teardown --------------------------------------------------------------
    async def _stop_receive(self) -> None:
        task = self._receive_task
        self._receive_task = None
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _teardown(self, exc: Exception) -> None:
        transport = self._transport
        self._transport = None
        await self._stop_receive()
        if transport:
            await self._close_quietly(transport)
        self.tracker.reset()
        if self.tracker.phase is not ConnectionPhase.DISCONNECTED:
            self._try_transition(ConnectionPhase.DISCONNECTED)
        if self.on_lost:
            self.on_lost(exc)

    @staticmethod
    async def _close_quietly(transport: BaseTransport) -> None:
        try:
            await transport.close()
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress transport close error", exc_info=True)

    def _try_transition(self, phase: ConnectionPhase) -> None:
        try:
            self.tracker.transition(phase)
        except ValueError:
            LOGGER.debug(
                "Ignoring invalid connection transition %s -> %s",
                self.tracker.phase.value,
                phase.value,
            )
