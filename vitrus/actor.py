"""Actor handle returned by ``Vitrus.actor``."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Sequence, Tuple

from vitrus.network.registry import HandlerCallable

if TYPE_CHECKING:  # pragma: no cover
    from vitrus.client import Vitrus


class Actor:
    """Named actor bound to one session.

    The same handle serves both roles: when the session is this actor it
    hosts commands (``on`` / ``command``), otherwise it only calls them
    (``run``).
    """

    def __init__(self, client: Vitrus, name: str) -> None:
        self._client = client
        self.name = name

    def __repr__(self) -> str:
        return f"Actor(name={self.name!r})"

    async def on(
        self,
        command_name: str,
        handler: HandlerCallable,
        *,
        parameter_types: Optional[Sequence[str]] = None,
    ) -> Actor:
        await self._client.register_command(self.name, command_name, handler, parameter_types)
        return self

    def command(
        self,
        name: Optional[str] = None,
        *,
        parameter_types: Optional[Sequence[str]] = None,
    ) -> Callable[[HandlerCallable], HandlerCallable]:
        """Decorator form of ``on``; the function name is the default command name."""

        def decorator(handler: HandlerCallable) -> HandlerCallable:
            self._client.add_command(self.name, name or handler.__name__, handler, parameter_types)
            return handler

        return decorator

    async def run(self, command_name: str, *args: Any) -> Any:
        return await self._client.run_command(self.name, command_name, list(args))

    def get_metadata(self) -> Dict[str, Any]:
        return self._client.get_metadata(self.name)

    def update_metadata(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        return self._client.update_metadata(self.name, changes)

    def registered_commands(self) -> Dict[str, Tuple[str, ...]]:
        return self._client.registry.known_signatures(self.name)
