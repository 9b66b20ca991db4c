"""
Unit tests for config/settings.py

Tests configuration loading, aliases, validation and derived values.
"""
import sys

import pytest
from pydantic import ValidationError as PydanticValidationError

from cicd_harness.config.settings import Settings, get_settings, reset_settings
from cicd_harness.exceptions import ConfigurationError


# ── Default values ──────────────────────────────────────────────────────────

def test_default_endpoint():
    s = Settings()
    assert s.host == "127.0.0.1"
    assert s.port == 4000
    assert s.health_path == "/health"


def test_default_timeouts():
    s = Settings()
    assert s.startup_timeout == 4.0
    assert s.max_attempts == 3
    assert s.grace_period == 2.0
    assert s.stop_timeout == 5.0
    assert s.probe_timeout == 1.0


def test_default_readiness_marker():
    s = Settings()
    assert s.readiness_marker == "Server running"


def test_webhook_secret_defaults_none():
    s = Settings()
    assert s.webhook_secret is None


# ── Environment variables ───────────────────────────────────────────────────

def test_prefixed_env_var(monkeypatch):
    monkeypatch.setenv("HARNESS_STARTUP_TIMEOUT", "9.5")
    assert Settings().startup_timeout == 9.5


def test_port_alias(monkeypatch):
    monkeypatch.setenv("PORT", "5050")
    assert Settings().port == 5050


def test_webhook_secret_alias(monkeypatch):
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", "s3cret")
    s = Settings()
    assert s.webhook_secret.get_secret_value() == "s3cret"


def test_field_name_init():
    s = Settings(port=4321)
    assert s.port == 4321


# ── Validation ──────────────────────────────────────────────────────────────

def test_log_level_normalized_to_uppercase():
    s = Settings(log_level="debug")
    assert s.log_level == "DEBUG"


def test_log_level_invalid_raises():
    with pytest.raises(PydanticValidationError):
        Settings(log_level="VERBOSE")


def test_port_out_of_range_raises():
    with pytest.raises(PydanticValidationError):
        Settings(port=70000)


def test_health_path_must_be_absolute():
    with pytest.raises(PydanticValidationError):
        Settings(health_path="health")


def test_max_attempts_must_be_positive():
    with pytest.raises(PydanticValidationError):
        Settings(max_attempts=0)


# ── Derived values ──────────────────────────────────────────────────────────

def test_endpoint_from_host_and_port():
    endpoint = Settings(host="127.0.0.1", port=4100).endpoint()
    assert endpoint.base_url == "http://127.0.0.1:4100"
    assert endpoint.health_url == "http://127.0.0.1:4100/health"


def test_endpoint_from_base_url():
    endpoint = Settings(base_url="http://localhost:8080").endpoint()
    assert endpoint.host == "localhost"
    assert endpoint.port == 8080


def test_endpoint_base_url_without_port():
    endpoint = Settings(base_url="https://example.com").endpoint()
    assert endpoint.port == 443
    assert endpoint.scheme == "https"


def test_command_default_runs_bundled_server():
    assert Settings().command() == [sys.executable, "-m", "cicd_harness", "serve"]


def test_command_override_is_split():
    s = Settings(start_command="node server.js --port 4000")
    assert s.command() == ["node", "server.js", "--port", "4000"]


def test_ensure_directories_creates_log_dir(tmp_path):
    logs = tmp_path / "logs"
    Settings(log_dir=logs).ensure_directories()
    assert logs.exists()


def test_get_settings_is_singleton():
    assert get_settings() is get_settings()
    first = get_settings()
    reset_settings()
    assert get_settings() is not first


def test_unparseable_command_raises_configuration_error():
    with pytest.raises(ConfigurationError):
        Settings(start_command='node "server.js').command()


def test_relative_base_url_raises_configuration_error():
    with pytest.raises(ConfigurationError):
        Settings(base_url="localhost-no-scheme").endpoint()
