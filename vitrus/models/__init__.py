from .errors import HANDSHAKE_ERROR_CODES, describe_handshake_error
from .frames import (
    FRAME_MODELS,
    ActorInfo,
    CommandFrame,
    Frame,
    GenericFrame,
    HandshakeFrame,
    HandshakeResponseFrame,
    ListWorkflowsFrame,
    RegisterCommandFrame,
    RegisteredCommand,
    ResponseFrame,
    WorkflowDescriptor,
    WorkflowFrame,
    WorkflowFunction,
    WorkflowListFrame,
    WorkflowResultFrame,
    decode_frame,
    encode_frame,
)

__all__ = [
    "FRAME_MODELS",
    "HANDSHAKE_ERROR_CODES",
    "ActorInfo",
    "CommandFrame",
    "Frame",
    "GenericFrame",
    "HandshakeFrame",
    "HandshakeResponseFrame",
    "ListWorkflowsFrame",
    "RegisterCommandFrame",
    "RegisteredCommand",
    "ResponseFrame",
    "WorkflowDescriptor",
    "WorkflowFrame",
    "WorkflowFunction",
    "WorkflowListFrame",
    "WorkflowResultFrame",
    "decode_frame",
    "describe_handshake_error",
    "encode_frame",
]
