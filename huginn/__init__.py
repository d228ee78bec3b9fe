"""
Huginn: MCP relay for task events and authorization requests
"""

from huginn.app import create_app
from huginn.core.config import HuginnConfig
from huginn.core.errors import (
    BackendUnavailableError,
    ConfigError,
    HuginnError,
    NotConnectedError,
    UnknownToolError,
    ValidationError,
)
from huginn.relay import ConnectionManager, EnvelopeBuilder, ToolDispatcher
from huginn.version import __version__

__all__ = [
    "__version__",
    "create_app",
    "HuginnConfig",
    "ConnectionManager",
    "EnvelopeBuilder",
    "ToolDispatcher",
    "HuginnError",
    "ValidationError",
    "UnknownToolError",
    "NotConnectedError",
    "BackendUnavailableError",
    "ConfigError",
]
