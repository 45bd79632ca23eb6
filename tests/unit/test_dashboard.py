"""Unit tests for background service management."""

import os
import signal
import subprocess
import sys
import time
import uuid

import pytest
import requests

from deployflow.pipeline import ServiceSpec
from deployflow.services import DashboardService, ServiceOutcome


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


def make_service(monkeypatch, running_pid=None, launch_error=None, **spec_kwargs):
    spec = ServiceSpec(command="serve", pattern="serve", **spec_kwargs)
    sleep = RecordingSleep()
    service = DashboardService(spec, sleep=sleep)
    monkeypatch.setattr(service, "find_running", lambda: running_pid)

    launches = []

    def launch():
        if launch_error is not None:
            raise launch_error
        launches.append(True)
        return 4242

    monkeypatch.setattr(service, "launch", launch)
    return service, sleep, launches


class TestEnsureRunning:
    """Tests for DashboardService.ensure_running."""

    def test_already_running_not_relaunched(self, monkeypatch):
        """Test a running instance is reused."""
        service, sleep, launches = make_service(monkeypatch, running_pid=99)
        result = service.ensure_running(health_check=lambda: True)
        assert result.ok
        assert result.launched is False
        assert result.pid == 99
        assert launches == []
        assert sleep.delays == []

    def test_launch_waits_grace_period(self, monkeypatch):
        """Test a fresh launch waits before the health check."""
        service, sleep, launches = make_service(monkeypatch, grace_seconds=3)
        result = service.ensure_running(health_check=lambda: True)
        assert result.outcome is ServiceOutcome.HEALTHY
        assert result.launched is True
        assert result.pid == 4242
        assert sleep.delays == [3]

    def test_bounded_retry_with_backoff(self, monkeypatch):
        """Test the health check is retried a bounded number of times."""
        service, sleep, _ = make_service(
            monkeypatch, running_pid=1, attempts=3, backoff_seconds=2
        )
        checks = []

        def unhealthy():
            checks.append(True)
            return False

        result = service.ensure_running(health_check=unhealthy)
        assert result.outcome is ServiceOutcome.UNHEALTHY
        assert result.attempts == 3
        assert len(checks) == 3
        assert sleep.delays == [2, 4]
        assert "3 attempt(s)" in result.message

    def test_recovers_on_later_attempt(self, monkeypatch):
        """Test a health check passing on retry is healthy."""
        service, _, _ = make_service(monkeypatch, running_pid=1, backoff_seconds=0)
        answers = iter([False, True])
        result = service.ensure_running(health_check=lambda: next(answers))
        assert result.ok
        assert result.attempts == 2

    def test_raising_health_check_counts_as_unhealthy(self, monkeypatch):
        """Test health check exceptions never escape."""
        service, _, _ = make_service(monkeypatch, running_pid=1, attempts=1)

        def broken():
            raise RuntimeError("boom")

        assert service.ensure_running(health_check=broken).outcome is ServiceOutcome.UNHEALTHY

    def test_grace_period_longer_than_timeout(self, monkeypatch):
        """Test a grace period past the time left is not slept."""
        service, sleep, launches = make_service(monkeypatch, grace_seconds=10)
        result = service.ensure_running(health_check=lambda: True, timeout=5)
        assert result.outcome is ServiceOutcome.UNHEALTHY
        assert result.launched is True
        assert launches == [True]
        assert sleep.delays == []
        assert "5.0s" in result.message

    def test_backoff_stops_at_timeout(self, monkeypatch):
        """Test retries end once the next backoff would pass the time left."""
        service, sleep, _ = make_service(
            monkeypatch, running_pid=1, attempts=5, backoff_seconds=2
        )
        result = service.ensure_running(health_check=lambda: False, timeout=7)
        assert result.outcome is ServiceOutcome.UNHEALTHY
        assert sleep.delays == [2, 4]
        assert result.attempts == 3

    def test_start_error(self, monkeypatch):
        """Test a launch failure is reported, not raised."""
        service, _, _ = make_service(monkeypatch, launch_error=FileNotFoundError("streamlit"))
        result = service.ensure_running(health_check=lambda: True)
        assert result.outcome is ServiceOutcome.START_ERROR
        assert not result.ok
        assert "streamlit" in result.message


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class TestHealthCheck:
    """Tests for the default health check."""

    def test_http_health(self, monkeypatch):
        """Test an HTTP status below 400 is healthy."""
        urls = []

        def fake_get(url, timeout):
            urls.append(url)
            return FakeResponse(200)

        monkeypatch.setattr(requests, "get", fake_get)
        spec = ServiceSpec(command="serve", pattern="serve", health_url="http://localhost:8501/")
        assert DashboardService(spec).check_health()
        assert urls == ["http://localhost:8501/"]

    def test_http_error_status(self, monkeypatch):
        """Test an error status is unhealthy."""
        monkeypatch.setattr(requests, "get", lambda url, timeout: FakeResponse(503))
        spec = ServiceSpec(command="serve", pattern="serve", health_url="http://localhost:8501/")
        assert not DashboardService(spec).check_health()

    def test_http_connection_error(self, monkeypatch):
        """Test a refused connection is unhealthy."""

        def refuse(url, timeout):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "get", refuse)
        spec = ServiceSpec(command="serve", pattern="serve", health_url="http://localhost:8501/")
        assert not DashboardService(spec).check_health()


def wait_for(service, timeout=5.0):
    """Poll until the service process shows up in the process table."""
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        pid = service.find_running()
        if pid is not None:
            return pid
        time.sleep(0.05)
    return None


class TestProcessDetection:
    """Tests using real processes."""

    @pytest.fixture
    def marker(self):
        return f"deployflow-test-{uuid.uuid4().hex}"

    def test_find_running_matches_pattern(self, marker):
        """Test a live process is found by its command line."""
        proc = subprocess.Popen(
            [sys.executable, "-c", "import time, sys; time.sleep(30)", marker]
        )
        try:
            service = DashboardService(ServiceSpec(command="unused", pattern=marker))
            assert wait_for(service) == proc.pid
        finally:
            proc.kill()
            proc.wait()

    def test_find_running_none(self, marker):
        """Test nothing matches an unused pattern."""
        service = DashboardService(ServiceSpec(command="unused", pattern=marker))
        assert service.find_running() is None

    def test_launch_detached(self, tmp_path, marker):
        """Test a launched service survives independently and logs output."""
        log_file = tmp_path / "dash.service.log"
        command = [
            sys.executable,
            "-u",
            "-c",
            "import time; print('serving', flush=True); time.sleep(30)",
            marker,
        ]
        service = DashboardService(
            ServiceSpec(command=command, pattern=marker),
            log_file=log_file,
            sleep=lambda seconds: None,
        )
        pid = service.launch()
        try:
            assert wait_for(service) == pid
            result = service.ensure_running()
            assert result.ok
            assert result.launched is False
            assert result.pid == pid
        finally:
            os.kill(pid, signal.SIGKILL)
