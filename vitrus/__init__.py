"""Python client for the Vitrus actor/agent orchestration service."""

from vitrus.actor import Actor
from vitrus.client import Vitrus
from vitrus.config import VitrusSettings, get_settings
from vitrus.errors import (
    AuthenticationError,
    ConnectionError,
    ConnectionLost,
    ProtocolError,
    RemoteExecutionError,
    RequestTimeout,
    TransportClosed,
    TransportNotReady,
    VitrusError,
)
from vitrus.network.router import Subscription
from vitrus.network.session_state import ConnectionPhase
from vitrus.scene import Scene
from vitrus.version import __version__

__all__ = [
    "Actor",
    "AuthenticationError",
    "ConnectionError",
    "ConnectionLost",
    "ConnectionPhase",
    "ProtocolError",
    "RemoteExecutionError",
    "RequestTimeout",
    "Scene",
    "Subscription",
    "TransportClosed",
    "TransportNotReady",
    "Vitrus",
    "VitrusError",
    "VitrusSettings",
    "__version__",
    "get_settings",
]
