"""Tests for huginn.core.config — Configuration management."""

import pytest

from huginn.core.config import BackendConfig, HuginnConfig, ServerConfig
from huginn.core.errors import ConfigError

_ENV_NAMES = (
    "HUGINN_MONITOR_URL", "MCP_MONITOR_URL", "MONITOR_URL",
    "HUGINN_RECONNECT_BASE_DELAY", "HUGINN_RECONNECT_MAX_DELAY",
    "HUGINN_MAX_RECONNECT_ATTEMPTS", "HUGINN_OPEN_TIMEOUT",
    "HUGINN_SOURCE_NAME", "SOURCE_NAME", "HUGINN_USER_ID", "USER_ID",
    "HUGINN_HOST", "HUGINN_PORT", "PORT",
    "HUGINN_LOG_LEVEL", "LOG_LEVEL", "HUGINN_LOG_FILE",
    "HUGINN_STREAMABLE_TOOL_SCHEMA",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


class TestHuginnConfigDefaults:
    def test_from_env_defaults(self):
        config = HuginnConfig.from_env()
        assert config.backend.url == "ws://localhost:2200"
        assert config.backend.reconnect_base_delay == 5.0
        assert config.backend.reconnect_max_delay == 30.0
        assert config.backend.max_reconnect_attempts == 10
        assert config.identity.source_name == "huginn-relay"
        assert config.identity.default_user_id == "global_user"
        assert config.identity.capabilities == ["task_events", "authorization_requests"]
        assert config.server.host == "0.0.0.0"
        assert config.server.port == 3000
        assert config.server.log_level == "info"
        assert config.server.streamable_tool_schema == "v1"


class TestHuginnConfigEnvOverrides:
    def test_prefixed_names(self, monkeypatch):
        monkeypatch.setenv("HUGINN_MONITOR_URL", "wss://monitor.example:443/ws")
        monkeypatch.setenv("HUGINN_RECONNECT_BASE_DELAY", "1.5")
        monkeypatch.setenv("HUGINN_MAX_RECONNECT_ATTEMPTS", "3")
        monkeypatch.setenv("HUGINN_USER_ID", "alice")
        monkeypatch.setenv("HUGINN_PORT", "8080")
        monkeypatch.setenv("HUGINN_STREAMABLE_TOOL_SCHEMA", "V2")
        config = HuginnConfig.from_env()
        assert config.backend.url == "wss://monitor.example:443/ws"
        assert config.backend.reconnect_base_delay == 1.5
        assert config.backend.max_reconnect_attempts == 3
        assert config.identity.default_user_id == "alice"
        assert config.server.port == 8080
        assert config.server.streamable_tool_schema == "v2"

    def test_legacy_names_are_fallbacks(self, monkeypatch):
        monkeypatch.setenv("MONITOR_URL", "ws://legacy:1")
        monkeypatch.setenv("MCP_MONITOR_URL", "ws://mcp:2")
        monkeypatch.setenv("USER_ID", "bob")
        monkeypatch.setenv("SOURCE_NAME", "ide-bridge")
        monkeypatch.setenv("PORT", "4000")
        monkeypatch.setenv("LOG_LEVEL", "WARN")
        config = HuginnConfig.from_env()
        assert config.backend.url == "ws://mcp:2"
        assert config.identity.default_user_id == "bob"
        assert config.identity.source_name == "ide-bridge"
        assert config.server.port == 4000
        assert config.server.log_level == "warning"

    def test_prefixed_name_wins(self, monkeypatch):
        monkeypatch.setenv("MONITOR_URL", "ws://legacy:1")
        monkeypatch.setenv("HUGINN_MONITOR_URL", "ws://preferred:2")
        assert HuginnConfig.from_env().backend.url == "ws://preferred:2"

    def test_blank_values_are_ignored(self, monkeypatch):
        monkeypatch.setenv("HUGINN_USER_ID", "   ")
        assert HuginnConfig.from_env().identity.default_user_id == "global_user"


class TestHuginnConfigValidation:
    @pytest.mark.parametrize("url", ["http://monitor:2200", "localhost:2200", "ws://"])
    def test_rejects_non_websocket_url(self, url):
        with pytest.raises(ConfigError) as exc_info:
            HuginnConfig.from_mapping({"backend": {"url": url}})
        assert "backend.url" in exc_info.value.field_errors

    def test_rejects_bad_port_from_env(self, monkeypatch):
        monkeypatch.setenv("HUGINN_PORT", "70000")
        with pytest.raises(ConfigError) as exc_info:
            HuginnConfig.from_env()
        assert "server.port" in exc_info.value.field_errors

    def test_rejects_unknown_log_level(self):
        with pytest.raises(ConfigError):
            HuginnConfig.from_mapping({"server": {"log_level": "verbose"}})

    def test_rejects_unknown_tool_schema(self):
        with pytest.raises(ConfigError):
            HuginnConfig.from_mapping({"server": {"streamable_tool_schema": "v3"}})

    def test_section_models_accept_defaults(self):
        assert BackendConfig().open_timeout == 10.0
        assert ServerConfig(log_level="DEBUG").log_level == "debug"


class TestHuginnConfigYaml:
    def test_from_yaml(self, tmp_path):
        path = tmp_path / "huginn.yaml"
        path.write_text(
            "backend:\n"
            "  url: ws://yaml-monitor:9000\n"
            "  max_reconnect_attempts: 2\n"
            "identity:\n"
            "  default_user_id: carol\n"
            "server:\n"
            "  port: 3100\n",
            encoding="utf-8",
        )
        config = HuginnConfig.from_yaml(str(path))
        assert config.backend.url == "ws://yaml-monitor:9000"
        assert config.backend.max_reconnect_attempts == 2
        assert config.identity.default_user_id == "carol"
        assert config.server.port == 3100
        assert config.identity.source_name == "huginn-relay"

    def test_missing_file_falls_back_to_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HUGINN_USER_ID", "dave")
        config = HuginnConfig.from_yaml(str(tmp_path / "absent.yaml"))
        assert config.identity.default_user_id == "dave"

    def test_invalid_yaml_raises_config_error(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("backend: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError) as exc_info:
            HuginnConfig.from_yaml(str(path))
        assert "__file__" in exc_info.value.field_errors

    def test_non_mapping_yaml_raises_config_error(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            HuginnConfig.from_yaml(str(path))

    def test_public_dict_is_json_ready(self):
        data = HuginnConfig().public_dict()
        assert data["backend"]["url"] == "ws://localhost:2200"
        assert data["server"]["port"] == 3000
