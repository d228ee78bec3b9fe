"""
Huginn relay exceptions.

Every error carries a stable ``kind`` plus structured context so transport
adapters can map it to a protocol-level error code without parsing messages.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional


class HuginnError(RuntimeError):
    """Base class for relay errors."""

    kind = "internal_error"

    def context(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, **self.context()}


class ValidationError(HuginnError):
    """Raised when tool arguments are missing or malformed."""

    kind = "validation_error"

    def __init__(self, tool: str, field_errors: Mapping[str, List[str]]) -> None:
        self.tool = tool
        self.field_errors = {name: list(messages) for name, messages in field_errors.items()}
        summary = "; ".join(
            f"{name}: {', '.join(messages)}" for name, messages in self.field_errors.items()
        )
        super().__init__(f"Invalid arguments for {tool}: {summary}")

    def context(self) -> Dict[str, Any]:
        return {"tool": self.tool, "fields": self.field_errors}


class UnknownToolError(HuginnError):
    """Raised when a tool name is not part of the relay's tool set."""

    kind = "unknown_tool"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool not found: {name}")

    def context(self) -> Dict[str, Any]:
        return {"name": self.name}


class NotConnectedError(HuginnError):
    """Raised by the connection manager when a send is attempted while not ready."""

    kind = "not_connected"

    def __init__(self, state: str, detail: Optional[str] = None) -> None:
        self.state = state
        self.detail = detail
        message = f"Backend socket is not ready (state={state})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    def context(self) -> Dict[str, Any]:
        return {"state": self.state}


class BackendUnavailableError(HuginnError):
    """Raised by the dispatcher when a validated call cannot reach the backend."""

    kind = "backend_unavailable"

    def __init__(self, tool: str, task_id: str, state: str) -> None:
        self.tool = tool
        self.task_id = task_id
        self.state = state
        super().__init__(
            f"Monitor not connected; {tool} for task {task_id} was not delivered "
            f"(state={state})"
        )

    def context(self) -> Dict[str, Any]:
        return {"tool": self.tool, "taskId": self.task_id, "state": self.state}


class MalformedInboundMessage(HuginnError):
    """Raised while parsing a backend frame that is not a typed JSON object."""

    kind = "malformed_inbound_message"

    def __init__(self, reason: str, preview: str = "") -> None:
        self.reason = reason
        self.preview = preview
        super().__init__(f"Malformed message from monitor: {reason}")

    def context(self) -> Dict[str, Any]:
        return {"reason": self.reason, "preview": self.preview}


class ConfigError(HuginnError):
    """Raised at startup when the configuration has an invalid shape."""

    kind = "config_error"

    def __init__(self, field_errors: Mapping[str, List[str]]) -> None:
        self.field_errors = {name: list(messages) for name, messages in field_errors.items()}
        summary = "; ".join(
            f"{name}: {', '.join(messages)}" for name, messages in self.field_errors.items()
        )
        super().__init__(f"Invalid configuration: {summary}")

    def context(self) -> Dict[str, Any]:
        return {"fields": self.field_errors}


def field_errors_from_pydantic(exc: Any) -> Dict[str, List[str]]:
    """Group a pydantic ``ValidationError`` into ``{dotted.field: [messages]}``."""
    grouped: Dict[str, List[str]] = {}
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "__root__"
        message = error.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        grouped.setdefault(location, []).append(message)
    return grouped
