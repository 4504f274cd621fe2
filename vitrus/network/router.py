"""Inbound frame routing: correlation, command execution and listeners."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

from vitrus.config import VitrusSettings
from vitrus.errors import ProtocolError, RemoteExecutionError
from vitrus.models.frames import (
    CommandFrame,
    Frame,
    ResponseFrame,
    WorkflowListFrame,
    WorkflowResultFrame,
    decode_frame,
)
from vitrus.network.correlator import RequestCorrelator
from vitrus.network.registry import CommandRegistry, HandlerCallable

LOGGER = logging.getLogger(__name__)

Listener = Callable[[Frame], Awaitable[None] | None]


@dataclass(eq=False)
class Subscription:
    """Handle for a listener (or a one-shot waiter) on one frame type."""

    frame_type: str
    _release: Callable[[Subscription], None] = field(repr=False)
    listener: Optional[Listener] = None
    future: Optional[asyncio.Future[Frame]] = field(default=None, repr=False)

    @property
    def once(self) -> bool:
        return self.future is not None

    async def wait(self, timeout: Optional[float] = None) -> Frame:
        """Await the frame of a one-shot subscription, releasing it afterwards."""

        if self.future is None:
            raise RuntimeError("Only one-shot subscriptions can be awaited")
        try:
            if timeout:
                return await asyncio.wait_for(asyncio.shield(self.future), timeout=timeout)
            return await self.future
        finally:
            self.close()

    def close(self) -> None:
        self._release(self)
        if self.future is not None and not self.future.done():
            self.future.cancel()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


@dataclass
class MessageRouter:
    """Classifies inbound frames and routes them to their consumer."""

    correlator: RequestCorrelator
    registry: CommandRegistry
    send: Callable[[BaseModel], Awaitable[None]]
    settings: Optional[VitrusSettings] = None

    _listeners: Dict[str, List[Subscription]] = field(
        default_factory=lambda: defaultdict(list), init=False, repr=False
    )
    _tasks: set[asyncio.Task[Any]] = field(default_factory=set, init=False, repr=False)

    # Subscriptions ---------------------------------------------------------
    def subscribe(self, frame_type: str, listener: Listener) -> Subscription:
        subscription = Subscription(frame_type=frame_type, _release=self._release, listener=listener)
        self._listeners[frame_type].append(subscription)
        LOGGER.debug("Registering listener for %s: %s", frame_type, listener)
        return subscription

    def subscribe_once(self, frame_type: str) -> Subscription:
        future: asyncio.Future[Frame] = asyncio.get_running_loop().create_future()
        subscription = Subscription(frame_type=frame_type, _release=self._release, future=future)
        self._listeners[frame_type].append(subscription)
        return subscription

    def _release(self, subscription: Subscription) -> None:
        subscriptions = self._listeners.get(subscription.frame_type)
        if subscriptions and subscription in subscriptions:
            subscriptions.remove(subscription)
            if not subscriptions:
                self._listeners.pop(subscription.frame_type, None)

    def listener_count(self, frame_type: str) -> int:
        return len(self._listeners.get(frame_type, []))

    # Routing ---------------------------------------------------------------
    async def route_raw(self, raw: str | bytes) -> None:
        try:
            frame = decode_frame(raw)
        except ProtocolError as exc:
            LOGGER.debug("Dropping malformed frame: %s", exc)
            return
        LOGGER.debug("Received %s frame", frame.type)
        await self.route(frame)

    async def route(self, frame: Frame) -> None:
        if frame.type == "HANDSHAKE_RESPONSE":
            if not self._notify(frame):
                LOGGER.debug("Ignoring HANDSHAKE_RESPONSE with no pending authentication")
            return
        if isinstance(frame, CommandFrame):
            self._dispatch_command(frame)
            return
        if isinstance(frame, (ResponseFrame, WorkflowResultFrame)):
            if frame.error is not None:
                self.correlator.reject(frame.request_id, RemoteExecutionError(frame.error))
            else:
                self.correlator.resolve(frame.request_id, frame.result)
            return
        if isinstance(frame, WorkflowListFrame):
            if frame.error is not None:
                self.correlator.reject(frame.request_id, RemoteExecutionError(frame.error))
            else:
                self.correlator.resolve(frame.request_id, list(frame.workflows or []))
            return
        if not self._notify(frame):
            LOGGER.debug("No listener registered for %s", frame.type)

    def _notify(self, frame: Frame) -> bool:
        subscriptions = list(self._listeners.get(frame.type, []))
        for subscription in subscriptions:
            if subscription.future is not None:
                self._release(subscription)
                if not subscription.future.done():
                    subscription.future.set_result(frame)
                continue
            try:
                result = subscription.listener(frame)  # type: ignore[misc]
                if inspect.isawaitable(result):
                    self._track(asyncio.ensure_future(result), f"listener {frame.type}")
            except Exception:  # noqa: BLE001
                LOGGER.exception("Listener failed for %s", frame.type)
        return bool(subscriptions)

    # Inbound commands ------------------------------------------------------
    def _dispatch_command(self, frame: CommandFrame) -> None:
        handler = self.registry.lookup(frame.target_actor_name, frame.command_name)
        if handler is None:
            if self.settings is not None and self.settings.reply_unknown_commands:
                message = f"Unknown command {frame.command_name} for actor {frame.target_actor_name}"
                self._track(
                    asyncio.create_task(self._reply(frame, error=message)),
                    f"unknown command {frame.request_id}",
                )
            return
        LOGGER.debug("Handling command %s.%s req=%s", frame.target_actor_name, frame.command_name, frame.request_id)
        task = asyncio.create_task(self._run_command(frame, handler), name=f"command-{frame.request_id}")
        self._track(task, f"command {frame.request_id}")

    def _track(self, task: asyncio.Future[Any], label: str) -> None:
        self._tasks.add(task)

        def _finalise(completed: asyncio.Future[Any]) -> None:
            self._tasks.discard(completed)
            if completed.cancelled():
                return
            exc = completed.exception()
            if exc is not None:
                LOGGER.error("Background %s failed: %s", label, exc)

        task.add_done_callback(_finalise)

    async def _run_command(self, frame: CommandFrame, handler: HandlerCallable) -> None:
        try:
            result = await self._invoke(handler, _positional(frame.args))
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning(
                "Command %s.%s failed req=%s: %s",
                frame.target_actor_name,
                frame.command_name,
                frame.request_id,
                exc,
            )
            await self._reply(frame, error=str(exc) or exc.__class__.__name__)
            return
        LOGGER.debug("Command %s.%s succeeded req=%s", frame.target_actor_name, frame.command_name, frame.request_id)
        await self._reply(frame, result=result)

    async def _invoke(self, handler: HandlerCallable, args: List[Any]) -> Any:
        mode = self.settings.handler_exec_mode if self.settings is not None else "auto"
        if inspect.iscoroutinefunction(handler) or mode == "inline":
            result = handler(*args)
        else:
            result = await asyncio.to_thread(handler, *args)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _reply(self, frame: CommandFrame, *, result: Any = None, error: Optional[str] = None) -> None:
        response = ResponseFrame(
            target_channel=frame.source_channel or "",
            request_id=frame.request_id,
            result=result,
            error=error,
        )
        try:
            await self.send(response)
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Command result for req=%s is not serialisable: %s", frame.request_id, exc)
            fallback = ResponseFrame(
                target_channel=frame.source_channel or "",
                request_id=frame.request_id,
                error=f"Command result is not JSON serialisable: {exc}",
            )
            try:
                await self.send(fallback)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Failed to send error RESPONSE for req=%s", frame.request_id)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to send RESPONSE for req=%s", frame.request_id)

    async def cancel_handlers(self) -> None:
        if not self._tasks:
            return
        tasks = list(self._tasks)
        self._tasks.clear()
        LOGGER.debug("Cancelling %s command tasks", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def _positional(args: Any) -> List[Any]:
    if args is None:
        return []
    if isinstance(args, (list, tuple)):
        return list(args)
    return [args]
