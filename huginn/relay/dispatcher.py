"""
Huginn Relay — Tool Dispatcher
==============================
Routes a tool call through validate → build envelope → send.

The dispatcher is stateless apart from its collaborators; it is shared by
every front-end adapter.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from huginn.core.errors import BackendUnavailableError, NotConnectedError, UnknownToolError

from .connection import ConnectionManager
from .definitions import TOOL_KINDS, tool_definitions
from .envelope import EnvelopeBuilder
from .models import AuthorizationRequest, SchemaVersion, TaskEvent, ToolRequest, ToolResult
from .validator import MessageValidator

logger = logging.getLogger("Huginn.relay.dispatcher")


def _confirmation(request: ToolRequest) -> str:
    if isinstance(request, TaskEvent):
        return f"Task event sent: {request.type.value} for task {request.task_id}"
    return f"Authorization request sent: {request.action} for task {request.task_id}"


class ToolDispatcher:
    def __init__(
        self,
        connection: ConnectionManager,
        builder: EnvelopeBuilder,
        default_user_id: str,
    ) -> None:
        self.connection = connection
        self.builder = builder
        self.validator = MessageValidator(default_user_id)

    def list_tools(self, schema: SchemaVersion = SchemaVersion.V1) -> List[Dict[str, Any]]:
        return tool_definitions(schema)

    async def dispatch(
        self,
        tool_name: str,
        raw_args: Any,
        schema: SchemaVersion = SchemaVersion.V1,
    ) -> ToolResult:
        """
        Validate, wrap and forward one tool call.

        Raises
        ------
        UnknownToolError
            ``tool_name`` is not one of the relay's tools.
        ValidationError
            The arguments are missing or malformed.
        BackendUnavailableError
            The arguments were valid but the monitor socket is not ready.
        """
        kind = TOOL_KINDS.get(tool_name)
        if kind is None:
            raise UnknownToolError(tool_name)

        request = self.validator.validate(kind, raw_args if raw_args is not None else {}, schema)
        envelope = self.builder.build(request)

        try:
            await self.connection.send(envelope)
        except NotConnectedError as exc:
            logger.warning(
                "Dropping %s for task %s: monitor not connected (state=%s)",
                tool_name,
                request.task_id,
                exc.state,
            )
            raise BackendUnavailableError(tool_name, request.task_id, exc.state) from exc

        request_id = None
        if isinstance(request, AuthorizationRequest):
            request_id = envelope.payload["requestId"]
        text = _confirmation(request)
        logger.info(text)
        return ToolResult(
            tool=tool_name,
            text=text,
            envelope_type=envelope.type,
            task_id=request.task_id,
            request_id=request_id,
        )
