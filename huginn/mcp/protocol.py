"""
Huginn MCP Protocol Constants
"""

from typing import Any, Dict, Optional

JSONRPC_VERSION = "2.0"
SUPPORTED_PROTOCOL_VERSIONS = ("2025-03-26", "2024-11-05")
SESSION_HEADER = "Mcp-Session-Id"
SERVER_NAME = "huginn-relay"

# Standard JSON-RPC Error Codes
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
PARSE_ERROR = -32700

# Huginn Specific Error Codes
BACKEND_UNAVAILABLE = -32000


def negotiate_protocol_version(version: Optional[str]) -> Optional[str]:
    if not version:
        return SUPPORTED_PROTOCOL_VERSIONS[0]
    if version in SUPPORTED_PROTOCOL_VERSIONS:
        return version
    return None


def result_response(msg_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": msg_id, "result": result}


def error_response(
    msg_id: Any,
    code: int,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": msg_id, "error": error}
