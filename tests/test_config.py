"""
Unit tests for AgentConfig and logging helpers.
"""

import os

from telemetry_agent.core.config import AgentConfig, create_default_config
from telemetry_agent.core.logger import mask_secret


class TestDefaults:
    """Test default values."""

    def test_influx_defaults(self, config):
        influx = config.get_influx_config()

        assert influx["url"] == "http://localhost:8086"
        assert influx["username"] == "development"
        assert influx["password"] == "development"
        assert influx["org"] == "development"
        assert influx["bucket"] == "development"
        assert influx["timeout"] == 10000
        assert influx["ping_timeout"] == 10000

    def test_agent_defaults(self, config):
        agent = config.get_agent_config()

        assert agent["interval_ms"] == 3000
        assert agent["gpu_vendor"] == "NVIDIA"
        assert agent["monitor"] == ["uuid", "currentLoad", "mem", "graphics", "fsSize"]

    def test_default_tags(self, config):
        assert config.get_default_tags() == {"hostname": "test-host", "app": "telemetry"}

    def test_defaults_are_valid(self, config):
        assert config.validate() is True


class TestOverrides:
    """Test file and environment overrides."""

    def test_environment_overrides_defaults(self, tmp_path):
        config = AgentConfig(str(tmp_path / "missing.ini"), environ={
            "INFLUXDB_URL": "http://influx:8086/",
            "INFLUXDB_ORG": "acme",
            "TELEMETRY_INTERVAL": "5000",
            "TELEMETRY_GPU_VENDOR": "AMD",
        })

        assert config.get_influx_config()["url"] == "http://influx:8086"
        assert config.get_influx_config()["org"] == "acme"
        assert config.get_agent_config()["interval_ms"] == 5000
        assert config.get_agent_config()["gpu_vendor"] == "AMD"

    def test_file_then_environment(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[influxdb]\norg = from-file\nbucket = metrics\n\n[tags]\nrack = r1\n")

        config = AgentConfig(str(path), environ={"INFLUXDB_ORG": "from-env"})

        assert config.get("influxdb", "org") == "from-env"
        assert config.get("influxdb", "bucket") == "metrics"
        assert config.get_default_tags()["rack"] == "r1"

    def test_empty_environment_value_is_ignored(self, tmp_path):
        config = AgentConfig(str(tmp_path / "missing.ini"), environ={"INFLUXDB_BUCKET": ""})

        assert config.get("influxdb", "bucket") == "development"


class TestSetupConfig:
    """Test bootstrap parameters."""

    def test_without_retention(self, config):
        assert config.get_setup_config() == {
            "username": "development",
            "password": "development",
            "org": "development",
            "bucket": "development",
        }

    def test_with_retention(self, config):
        config.set("influxdb", "retention_seconds", "86400")

        assert config.get_setup_config()["retentionPeriodSeconds"] == 86400


class TestValidation:
    """Test validate."""

    def test_invalid_url(self, config):
        config.set("influxdb", "url", "localhost:8086")

        assert config.validate() is False

    def test_invalid_interval(self, config):
        config.set("agent", "interval_ms", "0")

        assert config.validate() is False

    def test_missing_bucket(self, config):
        config.set("influxdb", "bucket", "")

        assert config.validate() is False


def test_create_default_config(tmp_path):
    path = tmp_path / "etc" / "config.ini"

    create_default_config(str(path))

    assert os.path.exists(path)
    assert AgentConfig(str(path), environ={}).get("agent", "interval_ms") == "3000"


def test_mask_secret():
    assert mask_secret("password", "development") == "deve..."
    assert mask_secret("token", "short") == "***"
    assert mask_secret("url", "http://localhost:8086") == "http://localhost:8086"
