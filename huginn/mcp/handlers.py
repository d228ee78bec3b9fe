"""
Transport-independent JSON-RPC handling shared by the streamable HTTP and
SSE adapters.

Conformance notes:
- Messages without an ``id`` are notifications and never get a response.
- Unknown request methods return -32601.
- Tool failures map to structured errors whose ``data`` carries the error
  ``kind`` plus its context.
"""

import logging
from typing import Any, Dict, Optional

from huginn.core.errors import (
    BackendUnavailableError,
    HuginnError,
    UnknownToolError,
    ValidationError,
)
from huginn.relay.dispatcher import ToolDispatcher
from huginn.relay.models import SchemaVersion
from huginn.version import __version__

from .protocol import (
    BACKEND_UNAVAILABLE,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    JSONRPC_VERSION,
    METHOD_NOT_FOUND,
    SERVER_NAME,
    SUPPORTED_PROTOCOL_VERSIONS,
    error_response,
    negotiate_protocol_version,
    result_response,
)

logger = logging.getLogger("Huginn.mcp.handlers")

_ERROR_CODES = (
    (ValidationError, INVALID_PARAMS),
    (UnknownToolError, METHOD_NOT_FOUND),
    (BackendUnavailableError, BACKEND_UNAVAILABLE),
)


def error_code_for(exc: HuginnError) -> int:
    for exc_type, code in _ERROR_CODES:
        if isinstance(exc, exc_type):
            return code
    return INTERNAL_ERROR


def is_notification(message: Any) -> bool:
    return isinstance(message, dict) and "id" not in message


class RpcHandler:
    """
    Answers one JSON-RPC message at a time.

    ``handle`` returns the response dict, or ``None`` for notifications.
    """

    def __init__(
        self,
        dispatcher: ToolDispatcher,
        schema: SchemaVersion = SchemaVersion.V1,
        server_name: str = SERVER_NAME,
        server_version: str = __version__,
    ):
        self.dispatcher = dispatcher
        self.schema = SchemaVersion(schema)
        self.server_name = server_name
        self.server_version = server_version

    async def handle(self, message: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(message, dict):
            return error_response(None, INVALID_REQUEST, "Invalid Request: message must be an object")

        msg_id = message.get("id")
        method = message.get("method")
        if message.get("jsonrpc") != JSONRPC_VERSION or not isinstance(method, str):
            if is_notification(message):
                logger.debug("Ignoring malformed notification: %r", message)
                return None
            return error_response(msg_id, INVALID_REQUEST, "Invalid Request: expected jsonrpc 2.0 with a method")

        if is_notification(message):
            self._handle_notification(method)
            return None

        try:
            return await self._handle_request(msg_id, method, message.get("params"))
        except Exception:
            logger.exception("An unexpected error occurred during RPC dispatch of %s", method)
            return error_response(
                msg_id,
                INTERNAL_ERROR,
                "Internal error during request dispatch.",
                {"kind": "internal_error"},
            )

    def _handle_notification(self, method: str) -> None:
        if method == "notifications/initialized":
            logger.info("Client initialized connection")
        else:
            logger.debug("Ignoring notification: %s", method)

    async def _handle_request(self, msg_id: Any, method: str, params: Any) -> Dict[str, Any]:
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return error_response(msg_id, INVALID_PARAMS, f"Invalid params: {method} params must be an object")

        if method == "initialize":
            return self._initialize(msg_id, params)
        if method == "ping":
            return result_response(msg_id, {})
        if method == "tools/list":
            return result_response(msg_id, {"tools": self.dispatcher.list_tools(self.schema)})
        if method == "tools/call":
            return await self._call_tool(msg_id, params)
        return error_response(msg_id, METHOD_NOT_FOUND, f"Method not found: {method}")

    def _initialize(self, msg_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        negotiated = negotiate_protocol_version(requested)
        if negotiated is None:
            negotiated = SUPPORTED_PROTOCOL_VERSIONS[0]
            logger.info("Client requested unsupported protocol %s; offering %s", requested, negotiated)
        client_info = params.get("clientInfo") or {}
        logger.info(
            "Initialize from %s (protocol %s)",
            client_info.get("name", "unknown client") if isinstance(client_info, dict) else "unknown client",
            negotiated,
        )
        return result_response(msg_id, {
            "protocolVersion": negotiated,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self.server_name, "version": self.server_version},
        })

    async def _call_tool(self, msg_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            return error_response(msg_id, INVALID_PARAMS, "Invalid params: tools/call requires a tool name")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}

        try:
            result = await self.dispatcher.dispatch(name, arguments, self.schema)
        except HuginnError as exc:
            if isinstance(exc, ValidationError):
                logger.info("Rejected %s: %s", name, exc)
            else:
                logger.warning("tools/call %s failed: %s", name, exc)
            return error_response(msg_id, error_code_for(exc), str(exc), exc.to_dict())
        return result_response(msg_id, result.mcp_content())
