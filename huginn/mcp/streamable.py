"""
Streamable HTTP adapter: one JSON-RPC message per ``POST /mcp``, answered
in the HTTP response body.

  POST /mcp   — JSON-RPC request → JSON-RPC response (200)
                JSON-RPC notification → 202 Accepted, empty body
  GET  /mcp   — 405; this relay never pushes server-initiated messages

Every response carries an ``Mcp-Session-Id`` header, echoed from the request
or freshly created.
"""

import json
import logging
import uuid

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from .handlers import RpcHandler
from .protocol import INVALID_REQUEST, PARSE_ERROR, SESSION_HEADER, error_response

logger = logging.getLogger("Huginn.mcp.streamable")


def create_streamable_router(handler: RpcHandler) -> APIRouter:
    router = APIRouter(tags=["mcp"])

    @router.post("/mcp")
    async def mcp_post(request: Request) -> Response:
        session_id = request.headers.get(SESSION_HEADER) or uuid.uuid4().hex
        headers = {SESSION_HEADER: session_id}

        raw = await request.body()
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.info("Rejected unparseable /mcp body (session=%s): %s", session_id, exc)
            return JSONResponse(
                error_response(None, PARSE_ERROR, "Parse error: body is not valid JSON"),
                status_code=400,
                headers=headers,
            )
        if not isinstance(message, dict):
            return JSONResponse(
                error_response(None, INVALID_REQUEST, "Invalid Request: body must be a JSON-RPC object"),
                status_code=400,
                headers=headers,
            )

        response = await handler.handle(message)
        if response is None:
            return Response(status_code=202, headers=headers)
        return JSONResponse(response, headers=headers)

    @router.get("/mcp")
    async def mcp_get() -> Response:
        return JSONResponse(
            error_response(None, INVALID_REQUEST, "Method not allowed: use POST /mcp"),
            status_code=405,
            headers={"Allow": "POST"},
        )

    return router
