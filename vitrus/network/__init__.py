"""Network stack (transport/connection/router) for the Vitrus session."""

from vitrus.network.connection import ConnectionManager, TransportFactory
from vitrus.network.correlator import PendingRequest, RequestCorrelator
from vitrus.network.registry import CommandEntry, CommandRegistry
from vitrus.network.router import MessageRouter, Subscription
from vitrus.network.session_state import AGENT, ActorIdentity, ConnectionPhase, ConnectionTracker
from vitrus.network.transport.base import BaseTransport
from vitrus.network.transport.dummy import DummyTransport
from vitrus.network.transport.websocket import WebSocketTransport

__all__ = [
    "AGENT",
    "ActorIdentity",
    "BaseTransport",
    "CommandEntry",
    "CommandRegistry",
    "ConnectionManager",
    "ConnectionPhase",
    "ConnectionTracker",
    "DummyTransport",
    "MessageRouter",
    "PendingRequest",
    "RequestCorrelator",
    "Subscription",
    "TransportFactory",
    "WebSocketTransport",
]
