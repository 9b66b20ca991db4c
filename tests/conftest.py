"""
Shared pytest fixtures for the CI/CD harness test suite.
"""
import socket
import sys
import threading
from pathlib import Path

import pytest

from cicd_harness.config import settings as settings_module
from cicd_harness.config.settings import Settings
from cicd_harness.models.outcomes import ServerEndpoint
from cicd_harness.webapp import create_server

# ── Constants ──────────────────────────────────────────────────────────────
FAKE_SERVER_PATH = Path(__file__).parent / "fixtures" / "fake-server" / "server.py"
MARKER = "Server running"

ENV_VARS = [
    "PORT",
    "ENVIRONMENT",
    "GITHUB_WEBHOOK_SECRET",
    "HARNESS_PORT",
    "HARNESS_HOST",
    "HARNESS_BASE_URL",
    "HARNESS_START_COMMAND",
    "HARNESS_LOG_LEVEL",
    "HARNESS_WEBHOOK_SECRET",
]


# ── Environment isolation ───────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the caller's environment from leaking into Settings."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    settings_module.reset_settings()
    yield
    settings_module.reset_settings()


# ── Ports ───────────────────────────────────────────────────────────────────

def get_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def free_port():
    """A port nothing listens on right now."""
    return get_free_port()


@pytest.fixture
def endpoint(free_port):
    return ServerEndpoint(host="127.0.0.1", port=free_port)


@pytest.fixture
def listening_socket():
    """A bound, listening socket; yields its port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(8)
        yield s.getsockname()[1]


# ── Fake server command ─────────────────────────────────────────────────────

@pytest.fixture
def fake_server_command():
    """Build argv for the configurable fixture server."""
    def build(port: int, *flags: str):
        return [sys.executable, str(FAKE_SERVER_PATH), "--port", str(port), *flags]
    return build


@pytest.fixture
def fast_settings(free_port):
    """Settings with short timeouts so failing scenarios finish quickly."""
    return Settings(
        port=free_port,
        readiness_marker=MARKER,
        startup_timeout=3.0,
        max_attempts=2,
        retry_delay=0.1,
        probe_timeout=0.5,
        probe_interval=0.1,
        assertion_timeout=2.0,
        grace_period=1.0,
        stop_timeout=4.0,
        port_wait_timeout=3.0,
        port_poll_interval=0.1,
    )


# ── In-process bundled server ───────────────────────────────────────────────

@pytest.fixture
def webapp_server():
    """Bundled health/webhook server on a random port, served from a thread."""
    servers = []

    def start(**kwargs):
        server = create_server("127.0.0.1", 0, **kwargs)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.shutdown()
        server.server_close()
