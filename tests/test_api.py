"""
Tests for huginn/app.py and the HTTP adapters (huginn/mcp/streamable.py,
huginn/mcp/sse.py).

Uses httpx.AsyncClient with ASGITransport against an app whose connection
manager talks to a fake socket. ASGITransport does not run the lifespan, so
tests connect explicitly where they need a ready backend.

Coverage targets:
  - POST /mcp               — JSON-RPC round trips, session header, 202, parse errors
  - GET  /sse, POST /messages — endpoint event, pushed responses, unknown session
  - GET  /health, GET /     — connection reporting
  - POST /backend/reconnect — explicit recovery
  - CORS and lifespan wiring
"""
from __future__ import annotations

import json

import httpx
import pytest
from fastapi import FastAPI

from huginn.app import create_app
from huginn.core.config import HuginnConfig
from huginn.mcp.handlers import RpcHandler
from huginn.mcp.sse import SseSessionRegistry, create_sse_router, session_events
from huginn.relay.models import ConnectionState

from conftest import settle


def _make_client(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    )


def _rpc(method, params=None, msg_id=1):
    message = {"jsonrpc": "2.0", "id": msg_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


_TASK_ARGS = {"taskId": "t1", "type": "task_started", "description": "Build started"}


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def app(manager):
    return create_app(HuginnConfig(), connection=manager)


# ---------------------------------------------------------------------------
# Streamable HTTP
# ---------------------------------------------------------------------------

class TestStreamableHttp:
    pytestmark = pytest.mark.asyncio

    async def test_initialize_creates_session_header(self, app):
        async with _make_client(app) as client:
            resp = await client.post("/mcp", json=_rpc("initialize", {"protocolVersion": "2025-03-26"}))
        assert resp.status_code == 200
        assert resp.headers["mcp-session-id"]
        assert resp.json()["result"]["protocolVersion"] == "2025-03-26"

    async def test_session_header_is_echoed(self, app):
        async with _make_client(app) as client:
            resp = await client.post("/mcp", json=_rpc("ping"), headers={"Mcp-Session-Id": "abc123"})
        assert resp.headers["mcp-session-id"] == "abc123"
        assert resp.json() == {"jsonrpc": "2.0", "id": 1, "result": {}}

    async def test_notification_is_accepted_without_body(self, app):
        async with _make_client(app) as client:
            resp = await client.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert resp.status_code == 202
        assert resp.content == b""

    async def test_unparseable_body_is_parse_error(self, app):
        async with _make_client(app) as client:
            resp = await client.post("/mcp", content=b"{not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == -32700

    async def test_non_object_body_is_invalid_request(self, app):
        async with _make_client(app) as client:
            resp = await client.post("/mcp", json=[_rpc("ping")])
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == -32600

    async def test_get_is_not_allowed(self, app):
        async with _make_client(app) as client:
            resp = await client.get("/mcp")
        assert resp.status_code == 405

    async def test_tools_list_defaults_to_camel_case(self, app):
        async with _make_client(app) as client:
            resp = await client.post("/mcp", json=_rpc("tools/list"))
        tools = {t["name"]: t for t in resp.json()["result"]["tools"]}
        assert "taskId" in tools["send_task_event"]["inputSchema"]["properties"]

    async def test_tools_list_honours_configured_schema(self, manager):
        config = HuginnConfig.from_mapping({"server": {"streamable_tool_schema": "v2"}})
        async with _make_client(create_app(config, connection=manager)) as client:
            resp = await client.post("/mcp", json=_rpc("tools/list"))
        tools = {t["name"]: t for t in resp.json()["result"]["tools"]}
        assert "event_type" in tools["send_task_event"]["inputSchema"]["properties"]

    async def test_tool_call_reaches_monitor(self, app, manager, connector):
        await manager.connect()
        async with _make_client(app) as client:
            resp = await client.post("/mcp", json=_rpc("tools/call", {"name": "send_task_event", "arguments": _TASK_ARGS}))
        assert resp.json()["result"]["content"][0]["text"] == "Task event sent: task_started for task t1"
        frames = connector.latest.sent_json()
        assert frames[-1]["type"] == "task_event"
        assert frames[-1]["payload"]["metadata"]["source"] == "huginn-relay"
        await manager.shutdown()

    async def test_tool_call_while_disconnected_reports_backend_unavailable(self, app):
        async with _make_client(app) as client:
            resp = await client.post("/mcp", json=_rpc("tools/call", {"name": "send_task_event", "arguments": _TASK_ARGS}))
        assert resp.status_code == 200
        error = resp.json()["error"]
        assert error["code"] == -32000
        assert error["data"]["kind"] == "backend_unavailable"
        assert error["data"]["taskId"] == "t1"


# ---------------------------------------------------------------------------
# Legacy SSE
# ---------------------------------------------------------------------------

class _PreClosedRegistry(SseSessionRegistry):
    """Sessions end right after the endpoint event, so the stream can be read in full."""

    def open(self):
        session = super().open()
        session.close()
        return session


class TestSse:
    pytestmark = pytest.mark.asyncio

    async def test_sse_stream_starts_with_endpoint_event(self, app):
        registry = _PreClosedRegistry()
        sse_app = FastAPI()
        sse_app.include_router(create_sse_router(RpcHandler(app.state.dispatcher), registry))

        async with _make_client(sse_app) as client:
            resp = await client.get("/sse")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.text.startswith("event: endpoint\ndata: /messages?sessionId=")
        assert len(registry) == 0

    async def test_posted_message_response_is_pushed_to_stream(self, app):
        session = app.state.sse_sessions.open()
        async with _make_client(app) as client:
            resp = await client.post(session.endpoint, json=_rpc("ping", msg_id=9))
        assert resp.status_code == 202
        assert session.queue.get_nowait() == {"jsonrpc": "2.0", "id": 9, "result": {}}

    async def test_notification_pushes_nothing(self, app):
        session = app.state.sse_sessions.open()
        async with _make_client(app) as client:
            resp = await client.post(session.endpoint, json={"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert resp.status_code == 202
        assert session.queue.empty()

    async def test_sse_always_uses_camel_case_tools(self, manager):
        config = HuginnConfig.from_mapping({"server": {"streamable_tool_schema": "v2"}})
        app = create_app(config, connection=manager)
        session = app.state.sse_sessions.open()
        async with _make_client(app) as client:
            await client.post(session.endpoint, json=_rpc("tools/list"))
        tools = {t["name"]: t for t in session.queue.get_nowait()["result"]["tools"]}
        assert "taskId" in tools["send_task_event"]["inputSchema"]["properties"]

    async def test_unknown_session_is_404(self, app):
        async with _make_client(app) as client:
            resp = await client.post("/messages?sessionId=nope", json=_rpc("ping"))
        assert resp.status_code == 404

    async def test_missing_session_id_is_400(self, app):
        async with _make_client(app) as client:
            resp = await client.post("/messages", json=_rpc("ping"))
        assert resp.status_code == 400

    async def test_unparseable_message_is_rejected_and_reported(self, app):
        session = app.state.sse_sessions.open()
        async with _make_client(app) as client:
            resp = await client.post(session.endpoint, content=b"{oops")
        assert resp.status_code == 400
        assert session.queue.get_nowait()["error"]["code"] == -32700

    async def test_session_events_stream_and_cleanup(self):
        registry = SseSessionRegistry()
        session = registry.open()
        stream = session_events(session, registry, keepalive=5.0)

        first = await stream.__anext__()
        assert first == f"event: endpoint\ndata: {session.endpoint}\n\n"

        await session.push({"jsonrpc": "2.0", "id": 1, "result": {}})
        second = await stream.__anext__()
        assert second.startswith("event: message\ndata: ")
        assert json.loads(second.split("data: ", 1)[1]) == {"jsonrpc": "2.0", "id": 1, "result": {}}

        session.close()
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert registry.get(session.id) is None

    async def test_idle_stream_sends_keepalive_comment(self):
        registry = SseSessionRegistry()
        session = registry.open()
        stream = session_events(session, registry, keepalive=0.01)
        await stream.__anext__()
        assert await stream.__anext__() == ": keepalive\n\n"
        await stream.aclose()
        assert len(registry) == 0


# ---------------------------------------------------------------------------
# Health, info, reconnect
# ---------------------------------------------------------------------------

class TestOperationalEndpoints:
    pytestmark = pytest.mark.asyncio

    async def test_health_reports_disconnected(self, app):
        async with _make_client(app) as client:
            resp = await client.get("/health")
        body = resp.json()
        assert resp.status_code == 200
        assert body["status"] == "healthy"
        assert body["service"] == "huginn-relay"
        assert body["websocket"] == "disconnected"
        assert body["monitor_url"] == "ws://localhost:2200"
        assert body["connection"]["state"] == "disconnected"
        assert body["timestamp"].endswith("Z")

    async def test_health_reports_connected(self, app, manager):
        await manager.connect()
        async with _make_client(app) as client:
            resp = await client.get("/health")
        assert resp.json()["websocket"] == "connected"
        assert resp.json()["connection"]["ready"] is True
        await manager.shutdown()

    async def test_root_lists_endpoints(self, app):
        async with _make_client(app) as client:
            resp = await client.get("/")
        endpoints = resp.json()["endpoints"]
        assert endpoints["mcp"] == "/mcp"
        assert endpoints["sse"] == "/sse"
        assert endpoints["health"] == "/health"

    async def test_reconnect_endpoint_connects(self, app, manager):
        async with _make_client(app) as client:
            resp = await client.post("/backend/reconnect")
        assert resp.json()["reconnected"] is True
        assert resp.json()["connection"]["state"] == "ready"
        assert manager.is_ready()
        await manager.shutdown()

    async def test_reconnect_endpoint_reports_failure(self, app, connector):
        connector.fail = True
        async with _make_client(app) as client:
            resp = await client.post("/backend/reconnect")
        assert resp.json()["reconnected"] is False
        assert resp.json()["connection"]["state"] == "backoff"

    async def test_cors_exposes_session_header(self, app):
        async with _make_client(app) as client:
            resp = await client.post("/mcp", json=_rpc("ping"), headers={"Origin": "http://ide.local"})
        assert resp.headers["access-control-allow-origin"] == "*"
        assert "mcp-session-id" in resp.headers["access-control-expose-headers"].lower()

    async def test_cors_preflight(self, app):
        async with _make_client(app) as client:
            resp = await client.options(
                "/mcp",
                headers={"Origin": "http://ide.local", "Access-Control-Request-Method": "POST"},
            )
        assert resp.status_code == 200
        assert "POST" in resp.headers["access-control-allow-methods"]


class TestLifespan:
    pytestmark = pytest.mark.asyncio

    async def test_lifespan_connects_and_shuts_down(self, app, manager, connector):
        async with app.router.lifespan_context(app):
            await settle()
            assert manager.is_ready()
        assert manager.state is ConnectionState.SHUTTING_DOWN
        assert connector.latest.closed is True

    async def test_lifespan_serves_while_monitor_is_down(self, app, manager, connector):
        connector.fail = True
        async with app.router.lifespan_context(app):
            await settle()
            assert manager.state is ConnectionState.BACKOFF
            async with _make_client(app) as client:
                resp = await client.get("/health")
            assert resp.json()["websocket"] == "disconnected"
        assert manager.state is ConnectionState.SHUTTING_DOWN
