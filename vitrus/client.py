"""Vitrus session facade: one connection, many concurrent exchanges."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel

from vitrus.actor import Actor
from vitrus.config import VitrusSettings, get_settings
from vitrus.errors import RequestTimeout
from vitrus.models.frames import (
    ActorInfo,
    CommandFrame,
    ListWorkflowsFrame,
    RegisterCommandFrame,
    WorkflowDescriptor,
    WorkflowFrame,
)
from vitrus.network.connection import ConnectionManager, TransportFactory
from vitrus.network.correlator import RequestCorrelator
from vitrus.network.registry import CommandEntry, CommandRegistry, HandlerCallable
from vitrus.network.router import Listener, MessageRouter, Subscription
from vitrus.network.session_state import AGENT, ActorIdentity, ConnectionPhase
from vitrus.network.transport.base import BaseTransport
from vitrus.network.transport.dummy import DummyTransport
from vitrus.network.transport.websocket import WebSocketTransport
from vitrus.scene import Scene
from vitrus.version import __version__

LOGGER = logging.getLogger(__name__)


def default_transport_factory(settings: VitrusSettings, url: str) -> BaseTransport:
    if settings.transport == "dummy":
        return DummyTransport(settings, url)
    return WebSocketTransport(settings, url)


class Vitrus:
    """Client session acting as an actor, an agent, or both in turn.

    Nothing connects until the first call that needs the service:
    ``authenticate()``, ``actor(name, metadata)``, ``run_command()``,
    ``workflow()`` or ``list_workflows()``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        world: Optional[str] = None,
        base_url: Optional[str] = None,
        debug: bool = False,
        *,
        settings: Optional[VitrusSettings] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        updates: Dict[str, Any] = {}
        if api_key is not None:
            updates["api_key"] = api_key
        if world is not None:
            updates["world_id"] = world
        if base_url is not None:
            updates["base_url"] = base_url
        if debug:
            updates["debug"] = True
        base = settings if settings is not None else get_settings()
        self.settings = base.model_copy(update=updates) if updates else base
        if not self.settings.api_key:
            raise ValueError("An API key is required (pass api_key or set VITRUS_API_KEY)")
        if self.settings.debug:
            logging.getLogger("vitrus").setLevel(logging.DEBUG)
        LOGGER.debug(
            "Vitrus v%s initialising world=%s base_url=%s",
            __version__,
            self.settings.world_id,
            self.settings.base_url,
        )

        self._metadata: Dict[str, Dict[str, Any]] = {}
        self._identity: Optional[ActorIdentity] = None
        self._background: set[asyncio.Task[Any]] = set()

        self.correlator = RequestCorrelator()
        self.registry = CommandRegistry(announce=self._announce, is_live=self._is_live)
        self.router = MessageRouter(
            correlator=self.correlator,
            registry=self.registry,
            send=self._send,
            settings=self.settings,
        )
        self.connection = ConnectionManager(
            settings=self.settings,
            transport_factory=transport_factory or default_transport_factory,
            router=self.router,
            metadata_for=self.get_metadata,
            on_actor_info=self._restore_actor,
            on_ready=self._on_ready,
            on_lost=self._on_lost,
        )

    # Session state ---------------------------------------------------------
    @property
    def phase(self) -> ConnectionPhase:
        return self.connection.phase

    @property
    def authenticated(self) -> bool:
        return self.connection.ready

    @property
    def client_id(self) -> Optional[str]:
        return self.connection.tracker.client_id

    @property
    def channel(self) -> Optional[str]:
        return self.connection.tracker.channel

    @property
    def actor_name(self) -> Optional[str]:
        return self._identity.name if self._identity else None

    @property
    def pending_requests(self) -> int:
        return self.correlator.pending_count()

    # Identity --------------------------------------------------------------
    async def authenticate(self, actor_name: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Connect as ``actor_name`` (or as an anonymous agent) and return whether READY.

        Connection and handshake failures propagate as ``ConnectionError`` /
        ``AuthenticationError``.
        """

        LOGGER.debug("Authenticating%s", f" as actor {actor_name}" if actor_name else "")
        if actor_name and metadata is not None:
            self._metadata[actor_name] = dict(metadata)
        self._identity = ActorIdentity(actor_name)
        await self.connection.connect(self._identity)
        return self.authenticated

    async def actor(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> Actor:
        """Become actor ``name`` when ``metadata`` is given, else return a handle for calling it."""

        if metadata is None:
            return Actor(self, name)
        LOGGER.debug("Declaring actor %s %s", name, metadata)
        self._metadata[name] = dict(metadata)
        if not self.connection.tracker.authenticated_as(name):
            await self.authenticate(name, metadata)
        return Actor(self, name)

    def get_metadata(self, actor_name: str) -> Dict[str, Any]:
        return dict(self._metadata.get(actor_name, {}))

    def update_metadata(self, actor_name: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        merged = {**self._metadata.get(actor_name, {}), **changes}
        self._metadata[actor_name] = merged
        return dict(merged)

    # Commands --------------------------------------------------------------
    async def register_command(
        self,
        actor_name: str,
        command_name: str,
        handler: HandlerCallable,
        parameter_types: Optional[Sequence[str]] = None,
    ) -> CommandEntry:
        return await self.registry.register(actor_name, command_name, handler, parameter_types)

    def add_command(
        self,
        actor_name: str,
        command_name: str,
        handler: HandlerCallable,
        parameter_types: Optional[Sequence[str]] = None,
    ) -> CommandEntry:
        """Register without awaiting; a live actor announces in the background."""

        entry = self.registry.add(actor_name, command_name, handler, parameter_types)
        if self.registry.is_live(actor_name):
            task = asyncio.get_running_loop().create_task(
                self._announce(entry), name=f"announce-{actor_name}.{command_name}"
            )
            self._background.add(task)
            task.add_done_callback(self._background_done)
        return entry

    async def run_command(self, actor_name: str, command_name: str, args: Optional[Sequence[Any]] = None) -> Any:
        LOGGER.debug("Running command %s.%s", actor_name, command_name)
        return await self._request(
            "cmd",
            lambda request_id: CommandFrame(
                target_actor_name=actor_name,
                command_name=command_name,
                args=list(args or []),
                request_id=request_id,
            ),
        )

    # Workflows -------------------------------------------------------------
    async def workflow(self, workflow_name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        LOGGER.debug("Running workflow %s", workflow_name)
        return await self._request(
            "wf",
            lambda request_id: WorkflowFrame(
                workflow_name=workflow_name,
                args=args if args is not None else {},
                request_id=request_id,
            ),
        )

    async def list_workflows(self) -> List[WorkflowDescriptor]:
        return await self._request("wfl", lambda request_id: ListWorkflowsFrame(request_id=request_id))

    # Listeners -------------------------------------------------------------
    def on(self, frame_type: str, listener: Listener) -> Subscription:
        """Listen for frames of a type the session does not handle itself."""

        return self.router.subscribe(frame_type, listener)

    # Placeholders carried by the SDK surface -------------------------------
    def scene(self, scene_id: str) -> Scene:
        LOGGER.debug("Getting scene %s", scene_id)
        return Scene(self, scene_id)

    async def upload_image(self, image: Any, filename: str = "image") -> str:
        LOGGER.debug("Uploading image %s", filename)
        return f"https://vitrus.io/images/{filename}"

    async def add_record(self, data: Any, name: Optional[str] = None) -> str:
        LOGGER.debug("Adding record %s", name)
        return name or self.correlator.new_id("record")

    # Lifecycle -------------------------------------------------------------
    async def close(self) -> None:
        await self.router.cancel_handlers()
        await self.connection.close()
        for task in list(self._background):
            task.cancel()
        self._background.clear()

    async def __aenter__(self) -> Vitrus:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # Internals -------------------------------------------------------------
    async def _ensure_ready(self) -> None:
        if self.connection.ready:
            return
        await self.connection.connect(self._identity or AGENT)

    async def _request(self, kind: str, build: Callable[[str], BaseModel]) -> Any:
        await self._ensure_ready()
        request_id = self.correlator.new_id(kind)
        future = self.correlator.register(request_id, kind)
        try:
            await self._send(build(request_id))
        except Exception as exc:
            LOGGER.debug("Failed to send %s: %s", request_id, exc)
            self.correlator.discard(request_id)
            raise
        timeout = self.settings.request_timeout_seconds
        try:
            if not timeout:
                return await future
            try:
                return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise RequestTimeout(f"No response to {request_id} within {timeout:g}s") from exc
        except (asyncio.CancelledError, RequestTimeout):
            self.correlator.discard(request_id)
            raise

    async def _send(self, frame: BaseModel) -> None:
        await self.connection.send(frame)

    async def _announce(self, entry: CommandEntry) -> None:
        LOGGER.debug("Announcing command %s.%s", entry.actor_name, entry.command_name)
        await self._send(
            RegisterCommandFrame(
                actor_name=entry.actor_name,
                command_name=entry.command_name,
                parameter_types=list(entry.parameter_types),
            )
        )

    def _is_live(self, actor_name: str) -> bool:
        return self.connection.ready and self.connection.tracker.authenticated_as(actor_name)

    def _restore_actor(self, actor_name: str, info: ActorInfo) -> None:
        self._metadata[actor_name] = dict(info.metadata)
        self.registry.restore_signatures(actor_name, info.registered_commands)

    async def _on_ready(self, identity: ActorIdentity) -> None:
        if identity.is_actor:
            await self.registry.replay_pending(identity.name)  # type: ignore[arg-type]

    def _on_lost(self, exc: Exception) -> None:
        rejected = self.correlator.reject_all(exc)
        if rejected:
            LOGGER.warning("Rejected %s pending request(s): %s", rejected, exc)

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.warning("Background announcement failed: %s", task.exception())
