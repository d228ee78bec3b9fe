"""
Huginn relay core: validation, envelope construction, the monitor
connection and tool dispatch.
"""

from .connection import ConnectionManager, parse_inbound
from .definitions import REQUEST_AUTHORIZATION, SEND_TASK_EVENT, tool_definitions
from .dispatcher import ToolDispatcher
from .envelope import EnvelopeBuilder, iso_timestamp, new_request_id
from .models import (
    AuthorizationRequest,
    ConnectionState,
    ConnectionStatus,
    Envelope,
    EnvelopeType,
    RequestKind,
    SchemaVersion,
    TaskEvent,
    TaskEventType,
    ToolResult,
)
from .validator import MessageValidator, validate

__all__ = [
    "AuthorizationRequest",
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "Envelope",
    "EnvelopeBuilder",
    "EnvelopeType",
    "MessageValidator",
    "REQUEST_AUTHORIZATION",
    "RequestKind",
    "SEND_TASK_EVENT",
    "SchemaVersion",
    "TaskEvent",
    "TaskEventType",
    "ToolDispatcher",
    "ToolResult",
    "iso_timestamp",
    "new_request_id",
    "parse_inbound",
    "tool_definitions",
    "validate",
]
