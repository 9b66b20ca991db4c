"""
Unit tests for utils/launcher.py

Runs the fixture server as a real child process. Each test terminates the
handle it receives.
"""
import sys

import pytest

from cicd_harness.models.outcomes import StartFailure, StartStatus
from cicd_harness.utils.launcher import build_child_env, launch
from cicd_harness.utils.terminator import terminate

MARKER = "Server running"


async def always_healthy(endpoint):
    return True


async def never_healthy(endpoint):
    return False


class TestBuildChildEnv:
    def test_inherits_environment(self, monkeypatch):
        monkeypatch.setenv("HARNESS_TEST_INHERITED", "yes")
        assert build_child_env()["HARNESS_TEST_INHERITED"] == "yes"

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("PORT", "1")
        assert build_child_env({"PORT": "2"})["PORT"] == "2"


class TestLaunch:
    @pytest.mark.asyncio
    async def test_ready_after_marker_and_probe(self, endpoint, fake_server_command):
        outcome, handle = await launch(
            fake_server_command(endpoint.port),
            endpoint,
            readiness_marker=MARKER,
            timeout=5.0,
            poll_interval=0.1
        )
        try:
            assert outcome.status == StartStatus.READY
            assert outcome.ready is True
            assert outcome.pid == handle.pid
            assert handle.marker_seen.is_set()
        finally:
            await terminate(handle, grace_period=1.0)

    @pytest.mark.asyncio
    async def test_split_marker_is_detected(self, endpoint, fake_server_command):
        outcome, handle = await launch(
            fake_server_command(endpoint.port, "--split-marker"),
            endpoint,
            readiness_marker=MARKER,
            timeout=5.0,
            prober=always_healthy
        )
        try:
            assert outcome.ready is True
        finally:
            await terminate(handle, grace_period=1.0)

    @pytest.mark.asyncio
    async def test_on_spawn_and_on_marker_callbacks(self, endpoint, fake_server_command):
        spawned = []
        markers = []
        outcome, handle = await launch(
            fake_server_command(endpoint.port),
            endpoint,
            readiness_marker=MARKER,
            timeout=5.0,
            on_spawn=spawned.append,
            on_marker=lambda: markers.append(True),
            prober=always_healthy
        )
        try:
            assert spawned == [handle]
            assert markers == [True]
        finally:
            await terminate(handle, grace_period=1.0)

    @pytest.mark.asyncio
    async def test_early_exit_reports_exit_code(self, endpoint, fake_server_command):
        outcome, handle = await launch(
            fake_server_command(endpoint.port, "--exit-code", "3"),
            endpoint,
            readiness_marker=MARKER,
            timeout=5.0
        )
        try:
            assert outcome.status == StartStatus.FAILED
            assert outcome.reason == StartFailure.EARLY_EXIT
            assert outcome.exit_code == 3
            assert outcome.elapsed_seconds < 5.0
        finally:
            await terminate(handle)

    @pytest.mark.asyncio
    async def test_clean_exit_before_ready_is_failure(self, endpoint):
        outcome, handle = await launch(
            [sys.executable, "-c", "print('bye')"],
            endpoint,
            readiness_marker=MARKER,
            timeout=5.0
        )
        try:
            assert outcome.reason == StartFailure.EARLY_EXIT
            assert outcome.exit_code == 0
        finally:
            await terminate(handle)

    @pytest.mark.asyncio
    async def test_missing_executable_is_spawn_error(self, endpoint, tmp_path):
        outcome, handle = await launch(
            [str(tmp_path / "no-such-binary")],
            endpoint,
            timeout=1.0
        )

        assert handle is None
        assert outcome.reason == StartFailure.SPAWN_ERROR
        assert "no-such-binary" in outcome.error

    @pytest.mark.asyncio
    async def test_timeout_without_marker(self, endpoint, fake_server_command):
        outcome, handle = await launch(
            fake_server_command(endpoint.port, "--no-marker"),
            endpoint,
            readiness_marker=MARKER,
            timeout=1.0,
            prober=always_healthy
        )
        try:
            assert outcome.reason == StartFailure.TIMEOUT
            assert "not seen" in outcome.error
            assert not handle.exited
        finally:
            stop = await terminate(handle, grace_period=1.0)
            assert stop.stopped

    @pytest.mark.asyncio
    async def test_timeout_when_probe_never_passes(self, endpoint, fake_server_command):
        outcome, handle = await launch(
            fake_server_command(endpoint.port),
            endpoint,
            readiness_marker=MARKER,
            timeout=1.0,
            poll_interval=0.1,
            prober=never_healthy
        )
        try:
            assert outcome.reason == StartFailure.TIMEOUT
            assert "Health check" in outcome.error
            assert handle.marker_seen.is_set()
        finally:
            await terminate(handle, grace_period=1.0)

    @pytest.mark.asyncio
    async def test_unhealthy_server_times_out(self, endpoint, fake_server_command):
        outcome, handle = await launch(
            fake_server_command(endpoint.port, "--health-status", "500"),
            endpoint,
            readiness_marker=MARKER,
            timeout=1.5,
            poll_interval=0.1,
            probe_timeout=0.5
        )
        try:
            assert outcome.reason == StartFailure.TIMEOUT
        finally:
            await terminate(handle, grace_period=1.0)

    @pytest.mark.asyncio
    async def test_env_overrides_reach_child(self, endpoint):
        code = "import os; print('Server running' if os.environ.get('FLAG') == 'on' else 'no', flush=True)"
        outcome, handle = await launch(
            [sys.executable, "-c", code + "; import time; time.sleep(30)"],
            endpoint,
            readiness_marker=MARKER,
            timeout=5.0,
            env={"FLAG": "on"},
            prober=always_healthy
        )
        try:
            assert outcome.ready is True
        finally:
            await terminate(handle, grace_period=1.0)
