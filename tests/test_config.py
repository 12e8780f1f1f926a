"""Tests for configuration loading."""

import pytest

from mqvision.config import Config, ConfigError, load_config


class TestLoadConfig:
    """Tests for load_config()."""

    def test_full_config(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("CONCIERGE_TOKEN", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text(
            "bus:\n"
            "  address: tcp://camera:5560\n"
            "  topic: meter\n"
            "concierge:\n"
            "  addr: https://concierge.example\n"
            "  token: secret\n"
            "gemini:\n"
            "  api_key: key\n"
            "  model: gemini-2.0-flash\n"
            "server:\n"
            "  port: 9090\n"
            "pipeline:\n"
            "  queue_size: 5\n"
            "  shutdown_grace_sec: 2\n"
        )

        config = load_config(path)

        assert config.bus.address == "tcp://camera:5560"
        assert config.bus.topic == "meter"
        assert config.concierge.addr == "https://concierge.example"
        assert config.concierge.token == "secret"
        assert config.concierge.ttl_minutes == 2880
        assert config.gemini.api_key == "key"
        assert config.gemini.model == "gemini-2.0-flash"
        assert config.server.port == 9090
        assert config.pipeline.queue_size == 5
        assert config.pipeline.shutdown_grace_sec == 2.0
        assert config.pipeline.max_inflight == 4

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        config = Config.from_dict({})
        assert config.pipeline.queue_size == 10
        assert config.server.port == 8080
        assert config.gemini.api_key == ""

    def test_env_secrets(self, monkeypatch):
        """Test environment variables fill missing secrets."""
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        monkeypatch.setenv("CONCIERGE_TOKEN", "env-token")
        config = Config.from_dict({"gemini": {"api_key": "file-key"}})
        assert config.gemini.api_key == "file-key"
        assert config.concierge.token == "env-token"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_missing_file_optional(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml", required=False)
        assert config.bus.topic == "gauge"

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("bus: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_invalid_value(self):
        with pytest.raises(ConfigError, match="server.port"):
            Config.from_dict({"server": {"port": "eighty"}})

    def test_invalid_section(self):
        with pytest.raises(ConfigError):
            Config.from_dict({"bus": "tcp://x"})

    def test_unknown_keys_ignored(self):
        config = Config.from_dict({"mqtt": {"broker": "x"}, "bus": {"color": "red"}})
        assert config.bus.address == "tcp://localhost:5560"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path).server.host == "0.0.0.0"

    def test_empty_values_keep_defaults(self, tmp_path, monkeypatch):
        """Test keys without a value behave like missing keys."""
        monkeypatch.setenv("GEMINI_API_KEY", "from-env")
        monkeypatch.setenv("CONCIERGE_TOKEN", "token-env")
        path = tmp_path / "config.yaml"
        path.write_text(
            "concierge:\n"
            "  addr:\n"
            "  token:\n"
            "gemini:\n"
            "  api_key:\n"
            "server:\n"
            "  port:\n"
        )

        config = load_config(path)

        assert config.concierge.addr == ""
        assert config.concierge.token == "token-env"
        assert config.gemini.api_key == "from-env"
        assert config.server.port == 8080
