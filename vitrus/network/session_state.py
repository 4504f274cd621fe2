"""Connection phase tracking for the orchestration service session."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


class ConnectionPhase(enum.Enum):
    """Client-side handshake state machine."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    AUTHENTICATING = "AUTHENTICATING"
    READY = "READY"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ActorIdentity:
    """Who the session authenticates as; ``name=None`` is an anonymous agent."""

    name: Optional[str] = None

    @property
    def is_actor(self) -> bool:
        return bool(self.name)


AGENT = ActorIdentity()


@dataclass
class ConnectionTracker:
    """In-memory session state: phase plus what the handshake assigned."""

    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    client_id: Optional[str] = None
    channel: Optional[str] = None
    identity: Optional[ActorIdentity] = None
    last_transition_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def authenticated(self) -> bool:
        return self.phase is ConnectionPhase.READY and bool(self.client_id)

    def authenticated_as(self, actor_name: Optional[str]) -> bool:
        if not self.authenticated or self.identity is None:
            return False
        return self.identity.name == actor_name

    def transition(self, next_phase: ConnectionPhase) -> None:
        """Move into a new phase, validating allowed transitions."""

        if not self._is_valid_transition(self.phase, next_phase):
            raise ValueError(f"Invalid transition {self.phase.value} → {next_phase.value}")
        self.phase = next_phase
        self.last_transition_at = datetime.now(tz=timezone.utc)

    def reset(self) -> None:
        self.client_id = None
        self.channel = None
        self.identity = None

    @staticmethod
    def _is_valid_transition(current: ConnectionPhase, nxt: ConnectionPhase) -> bool:
        allowed = {
            ConnectionPhase.DISCONNECTED: {ConnectionPhase.CONNECTING},
            ConnectionPhase.CONNECTING: {
                ConnectionPhase.OPEN,
                ConnectionPhase.FAILED,
                ConnectionPhase.DISCONNECTED,
            },
            ConnectionPhase.OPEN: {
                ConnectionPhase.AUTHENTICATING,
                ConnectionPhase.FAILED,
                ConnectionPhase.DISCONNECTED,
            },
            ConnectionPhase.AUTHENTICATING: {
                ConnectionPhase.READY,
                ConnectionPhase.FAILED,
                ConnectionPhase.DISCONNECTED,
            },
            ConnectionPhase.READY: {ConnectionPhase.DISCONNECTED},
            ConnectionPhase.FAILED: {ConnectionPhase.CONNECTING, ConnectionPhase.DISCONNECTED},
        }
        return nxt in allowed.get(current, set())
