"""
Huginn Relay — Data Models
==========================
Pydantic v2 models for tool inputs, validated requests, wire envelopes and
connection status.

Tool inputs arrive in one of two argument shapes:

  v1  camelCase  (taskId, type, description, userId, requiredBy, ...)
  v2  snake_case (task_id, event_type, message, progress / action, resource,
                  reason, timeout, ...)

Both shapes are validated into the same immutable request models
(``TaskEvent`` / ``AuthorizationRequest``), which the envelope builder turns
into wire ``Envelope`` objects.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class RequestKind(str, Enum):
    """The two request kinds the relay forwards."""
    TASK_EVENT = "task_event"
    AUTHORIZATION = "authorization_request"


class SchemaVersion(str, Enum):
    """Tool argument shape accepted by a front end."""
    V1 = "v1"   # camelCase
    V2 = "v2"   # snake_case


class TaskEventType(str, Enum):
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"


class EnvelopeType(str, Enum):
    TASK_EVENT = "task_event"
    AUTHORIZATION_REQUEST = "authorization_request"
    CLIENT_IDENTIFY = "mcp_client_identify"


class ConnectionState(str, Enum):
    """Lifecycle states of the backend socket."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDENTIFYING = "identifying"
    READY = "ready"
    CLOSING = "closing"
    ERRORED = "errored"
    BACKOFF = "backoff"
    SHUTTING_DOWN = "shutting_down"


# ---------------------------------------------------------------------------
# Untrusted tool inputs
# ---------------------------------------------------------------------------

# Date, "T", time with optional fraction, then "Z" or a +HH:MM offset.
_ISO_DATETIME = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:\d{2})\Z"
)
_AWARE_DATETIME = TypeAdapter(AwareDatetime)


def _reject_blank(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        raise ValueError("must not be blank")
    return value


class _ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class TaskEventInputV1(_ToolInput):
    """``send_task_event`` arguments, camelCase shape."""
    task_id: str = Field(alias="taskId", min_length=1)
    type: Literal["task_started", "task_completed", "task_failed"]
    description: str = Field(min_length=1)
    user_id: Optional[str] = Field(default=None, alias="userId")
    metadata: Optional[Dict[str, Any]] = None

    check_blank = field_validator("task_id", "description")(_reject_blank)


class AuthorizationInputV1(_ToolInput):
    """``request_authorization`` arguments, camelCase shape."""
    task_id: str = Field(alias="taskId", min_length=1)
    action: str = Field(min_length=1)
    description: str = Field(min_length=1)
    user_id: Optional[str] = Field(default=None, alias="userId")
    required_by: str = Field(alias="requiredBy")
    metadata: Optional[Dict[str, Any]] = None

    check_blank = field_validator("task_id", "action", "description")(_reject_blank)

    @field_validator("required_by", mode="before")
    @classmethod
    def require_iso_string(cls, v: Any) -> Any:
        if not isinstance(v, str) or not _ISO_DATETIME.match(v):
            raise ValueError("must be an ISO-8601 datetime string with a timezone")
        try:
            _AWARE_DATETIME.validate_python(v)
        except PydanticValidationError as exc:
            raise ValueError("must be a valid ISO-8601 datetime") from exc
        return v

    @property
    def deadline(self) -> datetime:
        return _AWARE_DATETIME.validate_python(self.required_by)


class TaskEventInputV2(_ToolInput):
    """``send_task_event`` arguments, snake_case shape."""
    task_id: str = Field(min_length=1)
    event_type: Literal["task_start", "task_complete", "task_error"]
    message: str = Field(min_length=1)
    progress: Optional[float] = Field(default=None, ge=0, le=100)
    metadata: Optional[Dict[str, Any]] = None

    check_blank = field_validator("task_id", "message")(_reject_blank)


class AuthorizationInputV2(_ToolInput):
    """``request_authorization`` arguments, snake_case shape."""
    action: str = Field(min_length=1)
    resource: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    timeout: float = Field(default=30, gt=0)
    task_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    check_blank = field_validator("action", "resource", "reason")(_reject_blank)


# ---------------------------------------------------------------------------
# Validated requests
# ---------------------------------------------------------------------------

class TaskEvent(BaseModel):
    """A validated task event, ready for envelope construction."""
    model_config = ConfigDict(frozen=True)

    kind: Literal[RequestKind.TASK_EVENT] = RequestKind.TASK_EVENT
    task_id: str
    type: TaskEventType
    description: str
    user_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AuthorizationRequest(BaseModel):
    """
    A validated authorization request.

    Exactly one of ``required_by`` (absolute deadline) or ``timeout_seconds``
    (deadline relative to envelope construction) is set. ``required_by_text``
    keeps the caller's validated string, forwarded on the wire as given.
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal[RequestKind.AUTHORIZATION] = RequestKind.AUTHORIZATION
    task_id: str
    action: str
    description: str
    user_id: str
    required_by: Optional[datetime] = None
    required_by_text: Optional[str] = None
    timeout_seconds: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_deadline(self) -> "AuthorizationRequest":
        if (self.required_by is None) == (self.timeout_seconds is None):
            raise ValueError("exactly one of required_by or timeout_seconds must be set")
        return self


ToolRequest = Union[TaskEvent, AuthorizationRequest]


# ---------------------------------------------------------------------------
# Wire envelope
# ---------------------------------------------------------------------------

class Envelope(BaseModel):
    """A JSON text frame sent to the monitor."""
    model_config = ConfigDict(frozen=True)

    type: EnvelopeType
    payload: Dict[str, Any]

    def wire_dict(self) -> Dict[str, Any]:
        """Return the JSON-serialisable wire representation."""
        return self.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Results and status
# ---------------------------------------------------------------------------

class ToolResult(BaseModel):
    """Outcome of a successful tool dispatch."""
    tool: str
    text: str
    envelope_type: EnvelopeType
    task_id: str
    request_id: Optional[str] = None

    def mcp_content(self) -> Dict[str, Any]:
        """MCP ``tools/call`` result body."""
        return {"content": [{"type": "text", "text": self.text}]}


class ConnectionStatus(BaseModel):
    """Read-only projection of the connection manager state."""
    state: ConnectionState
    ready: bool
    url: str
    attempts: int = 0
    max_attempts: int = 0
    gave_up: bool = False
    frames_sent: int = 0
    frames_received: int = 0
    malformed_frames: int = 0
    last_error: Optional[str] = None
    connected_at: Optional[float] = None

