"""
Legacy SSE adapter.

  GET  /sse                       — opens a session; streams an ``endpoint``
                                    event, then one ``message`` event per
                                    JSON-RPC response
  POST /messages?sessionId=<id>   — submit a JSON-RPC message; 202 Accepted,
                                    the response is pushed to the session stream

Sessions live in memory and disappear when their stream ends.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from .handlers import RpcHandler
from .protocol import INVALID_REQUEST, PARSE_ERROR, error_response

logger = logging.getLogger("Huginn.mcp.sse")

DEFAULT_KEEPALIVE_SECONDS = 15.0
_CLOSED = None


def format_sse(event: str, data: str) -> str:
    lines = "".join(f"data: {line}\n" for line in data.split("\n"))
    return f"event: {event}\n{lines}\n"


class SseSession:
    def __init__(self, session_id: str):
        self.id = session_id
        self.queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()

    @property
    def endpoint(self) -> str:
        return f"/messages?sessionId={self.id}"

    async def push(self, message: Dict[str, Any]) -> None:
        await self.queue.put(message)

    def close(self) -> None:
        self.queue.put_nowait(_CLOSED)


class SseSessionRegistry:
    """In-memory map of open SSE sessions."""

    def __init__(self):
        self._sessions: Dict[str, SseSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def open(self) -> SseSession:
        session = SseSession(uuid.uuid4().hex)
        self._sessions[session.id] = session
        logger.info("SSE session opened: %s", session.id)
        return session

    def get(self, session_id: str) -> Optional[SseSession]:
        return self._sessions.get(session_id)

    def discard(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.info("SSE session closed: %s", session_id)

    def close_all(self) -> None:
        for session in list(self._sessions.values()):
            session.close()
        self._sessions.clear()


async def session_events(
    session: SseSession,
    registry: SseSessionRegistry,
    keepalive: float = DEFAULT_KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield the SSE frames for one session until it is closed or the client goes away."""
    try:
        yield format_sse("endpoint", session.endpoint)
        while True:
            try:
                message = await asyncio.wait_for(session.queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if message is _CLOSED:
                break
            yield format_sse("message", json.dumps(message))
    finally:
        registry.discard(session.id)


def create_sse_router(
    handler: RpcHandler,
    registry: SseSessionRegistry,
    keepalive: float = DEFAULT_KEEPALIVE_SECONDS,
) -> APIRouter:
    router = APIRouter(tags=["mcp-sse"])

    @router.get("/sse")
    async def sse_connect() -> StreamingResponse:
        session = registry.open()
        return StreamingResponse(
            session_events(session, registry, keepalive),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @router.post("/messages")
    async def sse_message(request: Request, sessionId: Optional[str] = Query(default=None)) -> Response:
        if not sessionId:
            return JSONResponse({"error": "Missing sessionId"}, status_code=400)
        session = registry.get(sessionId)
        if session is None:
            return JSONResponse({"error": "Session not found"}, status_code=404)

        raw = await request.body()
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            await session.push(error_response(None, PARSE_ERROR, "Parse error: body is not valid JSON"))
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)
        if not isinstance(message, dict):
            await session.push(error_response(None, INVALID_REQUEST, "Invalid Request: body must be a JSON-RPC object"))
            return JSONResponse({"error": "Invalid JSON-RPC message"}, status_code=400)

        response = await handler.handle(message)
        if response is not None:
            await session.push(response)
        return Response(content="Accepted", status_code=202, media_type="text/plain")

    return router
