"""Local command registry for actors hosted by this process."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from vitrus.models.frames import RegisteredCommand

LOGGER = logging.getLogger(__name__)

HandlerCallable = Callable[..., Any]
RegistryKey = Tuple[str, str]  # (actor_name, command_name)


@dataclass(frozen=True)
class CommandEntry:
    actor_name: str
    command_name: str
    handler: HandlerCallable
    parameter_types: Tuple[str, ...] = ()


def parameter_types_for(handler: HandlerCallable) -> Tuple[str, ...]:
    """Type tags for a handler's positional parameters, read from its signature."""

    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError):
        return ()
    tags: List[str] = []
    for param in signature.parameters.values():
        if param.kind not in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            inspect.Parameter.VAR_POSITIONAL,
        ):
            continue
        annotation = param.annotation
        if annotation is inspect.Parameter.empty:
            tag = "any"
        elif isinstance(annotation, str):
            tag = annotation
        else:
            tag = getattr(annotation, "__name__", None) or str(annotation)
        tags.append(f"...{tag}" if param.kind is inspect.Parameter.VAR_POSITIONAL else tag)
    return tuple(tags)


@dataclass
class CommandRegistry:
    """Table of (actor, command) handlers with deferred announcement."""

    announce: Callable[[CommandEntry], Awaitable[None]]
    is_live: Callable[[str], bool]

    _entries: Dict[RegistryKey, CommandEntry] = field(default_factory=dict, init=False, repr=False)
    _remote_signatures: Dict[RegistryKey, Tuple[str, ...]] = field(default_factory=dict, init=False, repr=False)

    def add(
        self,
        actor_name: str,
        command_name: str,
        handler: HandlerCallable,
        parameter_types: Optional[Sequence[str]] = None,
    ) -> CommandEntry:
        """Store a handler locally without announcing it."""

        if not callable(handler):
            raise TypeError(f"Handler for {actor_name}.{command_name} must be callable")
        declared = tuple(parameter_types) if parameter_types is not None else parameter_types_for(handler)
        entry = CommandEntry(
            actor_name=actor_name,
            command_name=command_name,
            handler=handler,
            parameter_types=declared,
        )
        self._entries[(actor_name, command_name)] = entry
        LOGGER.debug("Registered command %s.%s %s", actor_name, command_name, list(declared))
        return entry

    async def register(
        self,
        actor_name: str,
        command_name: str,
        handler: HandlerCallable,
        parameter_types: Optional[Sequence[str]] = None,
    ) -> CommandEntry:
        """Store a handler and announce it now if we are live as that actor."""

        entry = self.add(actor_name, command_name, handler, parameter_types)
        if self.is_live(actor_name):
            await self.announce(entry)
        else:
            LOGGER.debug("Deferring announcement of %s.%s until authenticated", actor_name, command_name)
        return entry

    def unregister(self, actor_name: str, command_name: str) -> None:
        self._entries.pop((actor_name, command_name), None)

    async def replay_pending(self, actor_name: str) -> int:
        """Announce every local command of the actor; called once per successful handshake."""

        replayed = 0
        for entry in self.entries(actor_name):
            await self.announce(entry)
            replayed += 1
        if replayed:
            LOGGER.info("Announced %s command(s) for actor %s", replayed, actor_name)
        return replayed

    def restore_signatures(self, actor_name: str, commands: Iterable[RegisteredCommand]) -> None:
        for command in commands:
            self._remote_signatures[(actor_name, command.name)] = tuple(command.parameter_types)
        LOGGER.debug("Restored remote signatures for %s: %s", actor_name, self.known_signatures(actor_name))

    def known_signatures(self, actor_name: str) -> Dict[str, Tuple[str, ...]]:
        """Signatures the service knows plus local ones; local entries win."""

        known = {cmd: sig for (actor, cmd), sig in self._remote_signatures.items() if actor == actor_name}
        for entry in self.entries(actor_name):
            known[entry.command_name] = entry.parameter_types
        return known

    def lookup(self, actor_name: str, command_name: str) -> Optional[HandlerCallable]:
        entry = self._entries.get((actor_name, command_name))
        if entry is None:
            LOGGER.debug("No handler registered for %s.%s", actor_name, command_name)
            return None
        return entry.handler

    def entries(self, actor_name: Optional[str] = None) -> List[CommandEntry]:
        return [entry for entry in self._entries.values() if actor_name is None or entry.actor_name == actor_name]
