"""Typed JSON frames exchanged with the orchestration service."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from vitrus.errors import ProtocolError


class _Frame(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


def _error_text(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("message"), str):
        return value["message"]
    return str(value)


class _ErrorFrame(_Frame):
    error: Optional[str] = None

    @field_validator("error", mode="before")
    @classmethod
    def _coerce_error(cls, value: Any) -> Any:
        return _error_text(value)


class HandshakeFrame(_Frame):
    """First frame sent once the transport is open."""

    type: Literal["HANDSHAKE"] = "HANDSHAKE"
    api_key: str = Field(alias="apiKey")
    world_id: Optional[str] = Field(default=None, alias="worldId")
    actor_name: Optional[str] = Field(default=None, alias="actorName")
    metadata: Optional[Dict[str, Any]] = None


class RegisteredCommand(_Frame):
    name: str
    parameter_types: List[str] = Field(default_factory=list, alias="parameterTypes")


class ActorInfo(_Frame):
    """Actor state the service remembers from earlier sessions."""

    metadata: Dict[str, Any] = Field(default_factory=dict)
    registered_commands: List[RegisteredCommand] = Field(default_factory=list, alias="registeredCommands")

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value: Any) -> Any:
        return {} if value is None else value


class HandshakeResponseFrame(_Frame):
    type: Literal["HANDSHAKE_RESPONSE"] = "HANDSHAKE_RESPONSE"
    success: bool
    client_id: Optional[str] = Field(default=None, alias="clientId")
    error_code: Optional[str] = None
    redis_channel: Optional[str] = Field(default=None, alias="redisChannel")
    message: Optional[str] = None
    actor_info: Optional[ActorInfo] = Field(default=None, alias="actorInfo")


class RegisterCommandFrame(_Frame):
    type: Literal["REGISTER_COMMAND"] = "REGISTER_COMMAND"
    actor_name: str = Field(alias="actorName")
    command_name: str = Field(alias="commandName")
    parameter_types: List[str] = Field(default_factory=list, alias="parameterTypes")


class CommandFrame(_Frame):
    """Invocation of an actor command, in either direction."""

    type: Literal["COMMAND"] = "COMMAND"
    target_actor_name: str = Field(alias="targetActorName")
    command_name: str = Field(alias="commandName")
    args: Any = Field(default_factory=list)
    request_id: str = Field(alias="requestId")
    source_channel: Optional[str] = Field(default=None, alias="sourceChannel")


class ResponseFrame(_ErrorFrame):
    type: Literal["RESPONSE"] = "RESPONSE"
    target_channel: str = Field(default="", alias="targetChannel")
    request_id: str = Field(alias="requestId")
    result: Any = None


class WorkflowFrame(_Frame):
    type: Literal["WORKFLOW"] = "WORKFLOW"
    workflow_name: str = Field(alias="workflowName")
    args: Any = Field(default_factory=dict)
    request_id: str = Field(alias="requestId")


class WorkflowResultFrame(_ErrorFrame):
    type: Literal["WORKFLOW_RESULT"] = "WORKFLOW_RESULT"
    request_id: str = Field(alias="requestId")
    result: Any = None


class ListWorkflowsFrame(_Frame):
    type: Literal["LIST_WORKFLOWS"] = "LIST_WORKFLOWS"
    request_id: str = Field(alias="requestId")


class WorkflowFunction(_Frame):
    name: str
    description: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    strict: Optional[bool] = None


class WorkflowDescriptor(_Frame):
    """Workflow advertised by the service, in function-calling tool shape."""

    type: str = "function"
    function: WorkflowFunction


class WorkflowListFrame(_ErrorFrame):
    type: Literal["WORKFLOW_LIST"] = "WORKFLOW_LIST"
    request_id: str = Field(alias="requestId")
    workflows: Optional[List[WorkflowDescriptor]] = None


class GenericFrame(_Frame):
    """Frame of a type this client does not model; extra fields are kept."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    type: str


Frame = Union[
    HandshakeFrame,
    HandshakeResponseFrame,
    RegisterCommandFrame,
    CommandFrame,
    ResponseFrame,
    WorkflowFrame,
    WorkflowResultFrame,
    ListWorkflowsFrame,
    WorkflowListFrame,
    GenericFrame,
]

FRAME_MODELS: Dict[str, type[BaseModel]] = {
    "HANDSHAKE": HandshakeFrame,
    "HANDSHAKE_RESPONSE": HandshakeResponseFrame,
    "REGISTER_COMMAND": RegisterCommandFrame,
    "COMMAND": CommandFrame,
    "RESPONSE": ResponseFrame,
    "WORKFLOW": WorkflowFrame,
    "WORKFLOW_RESULT": WorkflowResultFrame,
    "LIST_WORKFLOWS": ListWorkflowsFrame,
    "WORKFLOW_LIST": WorkflowListFrame,
}


def encode_frame(frame: BaseModel) -> Dict[str, Any]:
    """Dump a frame using wire names, omitting unset optional fields."""

    data = frame.model_dump(by_alias=True)
    return {key: value for key, value in data.items() if value is not None}


def decode_frame(raw: str | bytes | bytearray) -> Frame:
    """Parse one inbound text frame; raise ProtocolError when it is malformed."""

    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError("Frame is not valid UTF-8") from exc
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"Frame is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError("Frame must be a JSON object")
    frame_type = data.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise ProtocolError("Frame is missing a string 'type' discriminator")
    model = FRAME_MODELS.get(frame_type, GenericFrame)
    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as exc:
        raise ProtocolError(f"Invalid {frame_type} frame: {exc}") from exc
