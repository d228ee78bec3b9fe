"""
Huginn Configuration
--------------------
Centralized configuration for the relay. Loads from environment variables
and YAML config files.

Environment names follow the ``HUGINN_*`` prefix. The unprefixed names used
by earlier monitor deployments (``MCP_MONITOR_URL``, ``MONITOR_URL``,
``USER_ID``, ``SOURCE_NAME``, ``LOG_LEVEL``, ``PORT``) are still honoured as
fallbacks.
"""

import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from huginn.core.errors import ConfigError, field_errors_from_pydantic
from huginn.version import __version__

logger = logging.getLogger("Huginn.Config")

DEFAULT_MONITOR_URL = "ws://localhost:2200"
DEFAULT_SOURCE_NAME = "huginn-relay"
DEFAULT_USER_ID = "global_user"
DEFAULT_CAPABILITIES = ("task_events", "authorization_requests")
SUPPORTED_LOG_LEVELS = ("debug", "info", "warning", "warn", "error")
SUPPORTED_TOOL_SCHEMAS = ("v1", "v2")


def _first_env(*names: str) -> Optional[str]:
    """Return the first non-empty environment value among ``names``."""
    for name in names:
        raw = os.environ.get(name)
        if raw is not None and raw.strip() != "":
            return raw.strip()
    return None


class BackendConfig(BaseModel):
    """Monitor WebSocket endpoint and reconnect policy."""
    url: str = DEFAULT_MONITOR_URL
    reconnect_base_delay: float = Field(default=5.0, gt=0)
    reconnect_max_delay: float = Field(default=30.0, gt=0)
    max_reconnect_attempts: int = Field(default=10, ge=0)
    open_timeout: float = Field(default=10.0, gt=0)

    @field_validator("url")
    @classmethod
    def check_ws_scheme(cls, v: str) -> str:
        if not v.startswith(("ws://", "wss://")) or len(v.split("://", 1)[1]) == 0:
            raise ValueError("monitor URL must be a ws:// or wss:// URL")
        return v


class IdentityConfig(BaseModel):
    """How the relay introduces itself to the monitor."""
    source_name: str = Field(default=DEFAULT_SOURCE_NAME, min_length=1)
    default_user_id: str = Field(default=DEFAULT_USER_ID, min_length=1)
    client_version: str = __version__
    capabilities: List[str] = Field(default_factory=lambda: list(DEFAULT_CAPABILITIES))


class ServerConfig(BaseModel):
    """HTTP front-end configuration."""
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)
    log_level: str = "info"
    log_file: Optional[str] = None
    streamable_tool_schema: str = "v1"

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        level = v.strip().lower()
        if level not in SUPPORTED_LOG_LEVELS:
            raise ValueError(f"log level must be one of {SUPPORTED_LOG_LEVELS}")
        return "warning" if level == "warn" else level

    @field_validator("streamable_tool_schema")
    @classmethod
    def check_tool_schema(cls, v: str) -> str:
        schema = v.strip().lower()
        if schema not in SUPPORTED_TOOL_SCHEMAS:
            raise ValueError(f"tool schema must be one of {SUPPORTED_TOOL_SCHEMAS}")
        return schema


class HuginnConfig(BaseModel):
    """Root configuration for the relay."""
    backend: BackendConfig = Field(default_factory=BackendConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "HuginnConfig":
        """Validate a raw mapping, converting shape errors into ``ConfigError``."""
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise ConfigError(field_errors_from_pydantic(exc)) from exc

    @classmethod
    def from_env(cls) -> "HuginnConfig":
        """
        Load configuration from environment variables.

        Environment variables override defaults:
        - HUGINN_MONITOR_URL (or MCP_MONITOR_URL / MONITOR_URL): backend WebSocket URL
        - HUGINN_RECONNECT_BASE_DELAY / HUGINN_RECONNECT_MAX_DELAY: backoff seconds
        - HUGINN_MAX_RECONNECT_ATTEMPTS: attempts before giving up
        - HUGINN_OPEN_TIMEOUT: WebSocket handshake timeout in seconds
        - HUGINN_SOURCE_NAME (or SOURCE_NAME): client identifier
        - HUGINN_USER_ID (or USER_ID): default user for tool calls
        - HUGINN_HOST / HUGINN_PORT (or PORT): HTTP binding
        - HUGINN_LOG_LEVEL (or LOG_LEVEL) / HUGINN_LOG_FILE: logging
        - HUGINN_STREAMABLE_TOOL_SCHEMA: v1 (camelCase) or v2 (snake_case) on /mcp
        """
        backend: Dict[str, Any] = {}
        identity: Dict[str, Any] = {}
        server: Dict[str, Any] = {}

        env_map: Tuple[Tuple[Dict[str, Any], str, Tuple[str, ...]], ...] = (
            (backend, "url", ("HUGINN_MONITOR_URL", "MCP_MONITOR_URL", "MONITOR_URL")),
            (backend, "reconnect_base_delay", ("HUGINN_RECONNECT_BASE_DELAY",)),
            (backend, "reconnect_max_delay", ("HUGINN_RECONNECT_MAX_DELAY",)),
            (backend, "max_reconnect_attempts", ("HUGINN_MAX_RECONNECT_ATTEMPTS",)),
            (backend, "open_timeout", ("HUGINN_OPEN_TIMEOUT",)),
            (identity, "source_name", ("HUGINN_SOURCE_NAME", "SOURCE_NAME")),
            (identity, "default_user_id", ("HUGINN_USER_ID", "USER_ID")),
            (server, "host", ("HUGINN_HOST",)),
            (server, "port", ("HUGINN_PORT", "PORT")),
            (server, "log_level", ("HUGINN_LOG_LEVEL", "LOG_LEVEL")),
            (server, "log_file", ("HUGINN_LOG_FILE",)),
            (server, "streamable_tool_schema", ("HUGINN_STREAMABLE_TOOL_SCHEMA",)),
        )
        for section, key, names in env_map:
            value = _first_env(*names)
            if value is not None:
                section[key] = value

        # pydantic's lax mode parses the numeric strings above.
        return cls.from_mapping({"backend": backend, "identity": identity, "server": server})

    @classmethod
    def from_yaml(cls, path: str) -> "HuginnConfig":
        """Load configuration from a YAML file; a missing file falls back to the environment."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Config file not found: %s; using environment", path)
            return cls.from_env()
        except yaml.YAMLError as exc:
            raise ConfigError({"__file__": [f"invalid YAML in {path}: {exc}"]}) from exc
        if not isinstance(data, dict):
            raise ConfigError({"__file__": [f"{path} must contain a mapping at the top level"]})
        return cls.from_mapping(data)

    def public_dict(self) -> Dict[str, Any]:
        """Configuration snapshot suitable for startup logs and status output."""
        return self.model_dump(mode="json")
