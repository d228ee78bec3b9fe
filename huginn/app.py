"""
Huginn Relay — HTTP application
===============================
FastAPI app hosting both MCP front ends plus operational endpoints:

  POST /mcp                — streamable HTTP JSON-RPC
  GET  /sse                — legacy SSE stream
  POST /messages           — legacy SSE message submission
  GET  /health             — relay and monitor-socket health
  GET  /                   — service info
  POST /backend/reconnect  — explicit monitor reconnect (recovers after give-up)
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from huginn.core.config import HuginnConfig
from huginn.mcp.handlers import RpcHandler
from huginn.mcp.protocol import SERVER_NAME, SESSION_HEADER
from huginn.mcp.sse import SseSessionRegistry, create_sse_router
from huginn.mcp.streamable import create_streamable_router
from huginn.relay.connection import ConnectionManager
from huginn.relay.dispatcher import ToolDispatcher
from huginn.relay.envelope import EnvelopeBuilder, iso_timestamp, utc_now
from huginn.relay.models import SchemaVersion
from huginn.version import __version__

logger = logging.getLogger("Huginn.app")

TRANSPORT = "streamable-http+sse"


def build_connection(config: HuginnConfig, builder: EnvelopeBuilder) -> ConnectionManager:
    backend = config.backend
    identity = config.identity
    return ConnectionManager(
        backend.url,
        builder,
        client_id=identity.source_name,
        client_version=identity.client_version,
        capabilities=identity.capabilities,
        base_delay=backend.reconnect_base_delay,
        max_delay=backend.reconnect_max_delay,
        max_attempts=backend.max_reconnect_attempts,
        open_timeout=backend.open_timeout,
    )


def create_app(
    config: Optional[HuginnConfig] = None,
    connection: Optional[ConnectionManager] = None,
) -> FastAPI:
    """
    Build the relay application.

    ``connection`` may be injected (tests); otherwise one is built from
    ``config``. The lifespan starts connecting in the background, so the HTTP
    side is serving before the monitor is reachable.
    """
    config = config or HuginnConfig.from_env()
    builder = EnvelopeBuilder(config.identity.source_name)
    connection = connection or build_connection(config, builder)
    dispatcher = ToolDispatcher(connection, builder, config.identity.default_user_id)
    sessions = SseSessionRegistry()

    streamable_handler = RpcHandler(dispatcher, SchemaVersion(config.server.streamable_tool_schema))
    sse_handler = RpcHandler(dispatcher, SchemaVersion.V1)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Huginn relay starting (monitor=%s)", config.backend.url)
        connection.start()
        try:
            yield
        finally:
            logger.info("Shutting down Huginn relay...")
            sessions.close_all()
            await connection.shutdown()
            logger.info("Huginn relay stopped.")

    app = FastAPI(
        title="Huginn Relay",
        description="MCP to WebSocket relay for task events and authorization requests",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.connection = connection
    app.state.dispatcher = dispatcher
    app.state.sse_sessions = sessions

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[SESSION_HEADER],
    )

    app.include_router(create_streamable_router(streamable_handler))
    app.include_router(create_sse_router(sse_handler, sessions))

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        status = request.app.state.connection.status()
        return {
            "status": "healthy",
            "service": SERVER_NAME,
            "version": __version__,
            "transport": TRANSPORT,
            "timestamp": iso_timestamp(utc_now()),
            "websocket": "connected" if status.ready else "disconnected",
            "monitor_url": config.backend.url,
            "connection": status.model_dump(mode="json"),
        }

    @app.get("/")
    async def root():
        return {
            "service": SERVER_NAME,
            "version": __version__,
            "transport": TRANSPORT,
            "endpoints": {
                "mcp": "/mcp",
                "sse": "/sse",
                "messages": "/messages",
                "health": "/health",
                "reconnect": "/backend/reconnect",
            },
        }

    @app.post("/backend/reconnect")
    async def reconnect_backend(request: Request):
        manager = request.app.state.connection
        logger.info("Explicit monitor reconnect requested")
        ready = await manager.connect()
        return {"reconnected": ready, "connection": manager.status().model_dump(mode="json")}

    return app
