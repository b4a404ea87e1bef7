"""Tests for configuration module."""

import json
import os

import pytest
from pydantic import ValidationError

from camscout.config import Config, DiscoveryConfig, HealthCheckConfig
from camscout.models.common import AuthMode, DiscoveryMode


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # Keep a developer's .env out of the tests
    monkeypatch.chdir(tmp_path)
    for var in list(os.environ):
        if var.startswith("CAMSCOUT_"):
            monkeypatch.delenv(var)


def test_config_from_env(monkeypatch):
    """Test loading configuration from environment variables."""
    monkeypatch.setenv("CAMSCOUT_LOGGING__LEVEL", "DEBUG")
    monkeypatch.setenv("CAMSCOUT_SERVICE_NAME", "edge-camscout")
    monkeypatch.setenv("CAMSCOUT_DISCOVERY__PROBE_TIMEOUT_MILLIS", "750")
    monkeypatch.setenv("CAMSCOUT_DISCOVERY__DISCOVERY_MODE", "netscan")
    monkeypatch.setenv("CAMSCOUT_DISCOVERY__SUBNETS", '["192.168.1.0/24", "10.0.0.0/30"]')
    monkeypatch.setenv("CAMSCOUT_HEALTH_CHECK__TRANSPORT_PROBE", "tcp")
    monkeypatch.setenv("CAMSCOUT_CREDENTIALS__DEFAULT_AUTH_MODE", "digest")

    config = Config()

    assert config.logging.level == "DEBUG"
    assert config.service_name == "edge-camscout"
    assert config.discovery.probe_timeout_millis == 750
    assert config.discovery.probe_timeout_seconds == 0.75
    assert config.discovery.discovery_mode == DiscoveryMode.NETSCAN
    assert config.discovery.subnets == ["192.168.1.0/24", "10.0.0.0/30"]
    assert config.health_check.transport_probe == "tcp"
    assert config.credentials.default_auth_mode == AuthMode.DIGEST


def test_config_defaults():
    """Test default configuration values."""
    config = Config()

    assert config.discovery.enabled is False
    assert config.discovery.discovery_mode == DiscoveryMode.BOTH
    assert config.discovery.subnets == []
    assert config.discovery.scan_ports == ["3702"]
    assert config.discovery.probe_timeout_millis == 2000
    assert config.discovery.probe_async_limit == 4000
    assert config.discovery.max_discover_duration_seconds == 300

    assert config.health_check.enabled is True
    assert config.health_check.interval_seconds == 30
    assert config.health_check.transport_probe == "http"
    assert config.scheduler.max_interval_seconds == 300

    assert config.credentials.default_auth_mode == AuthMode.USERNAME_TOKEN
    assert config.credentials.default_secret_path == "credentials001"
    assert config.credentials.retry_max_wait_seconds == 20.0

    assert config.logging.level == "INFO"
    assert config.logging.format == "json"
    assert config.service_name == "camscout"


def test_config_from_file(tmp_path):
    config_path = tmp_path / "camscout.json"
    config_path.write_text(json.dumps({
        "service_name": "from-file",
        "discovery": {"subnets": ["172.16.0.0/28"], "probe_async_limit": 16},
        "health_check": {"interval_seconds": 10},
    }))

    config = Config.from_file(config_path)

    assert config.service_name == "from-file"
    assert config.discovery.subnets == ["172.16.0.0/28"]
    assert config.discovery.probe_async_limit == 16
    assert config.health_check.interval_seconds == 10


def test_probe_async_limit_must_be_positive():
    with pytest.raises(ValidationError):
        DiscoveryConfig(probe_async_limit=0)


def test_transport_probe_is_restricted():
    with pytest.raises(ValidationError):
        HealthCheckConfig(transport_probe="icmp")


def test_subnets_accept_comma_separated_string():
    config = DiscoveryConfig(subnets=" 10.0.0.0/24 , ,192.168.0.0/30")
    assert config.subnets == ["10.0.0.0/24", "192.168.0.0/30"]
