"""
Huginn MCP front ends: JSON-RPC handling plus the streamable HTTP and
legacy SSE transports.
"""

from .handlers import RpcHandler
from .sse import SseSessionRegistry, create_sse_router
from .streamable import create_streamable_router

__all__ = [
    "RpcHandler",
    "SseSessionRegistry",
    "create_sse_router",
    "create_streamable_router",
]
