"""Best-effort management of a long-lived background service.

The dashboard server is expected to outlive any single pipeline run, so it
is launched detached from the orchestrator. Before launching, running
processes are scanned for a matching command line to avoid duplicates.
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Mapping, Optional

import psutil
import requests

if TYPE_CHECKING:
    from ..pipeline.stage import ServiceSpec

logger = logging.getLogger(__name__)


class ServiceOutcome(str, Enum):
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"
    START_ERROR = "START_ERROR"


@dataclass(frozen=True)
class EnsureResult:
    """What ``ensure_running`` found or did."""

    outcome: ServiceOutcome
    launched: bool
    pid: Optional[int] = None
    attempts: int = 0
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is ServiceOutcome.HEALTHY


class DashboardService:
    """Keeps a background service running and checks its health.

    Parameters
    ----------
    spec : ServiceSpec
        Launch command, detection pattern and health policy
    env : Mapping[str, str], optional
        Variables layered over the inherited environment for the launch
    log_file : Path, optional
        File receiving the service's combined output
    sleep : Callable[[float], None]
        Delay function (injectable for tests)
    """

    def __init__(
        self,
        spec: "ServiceSpec",
        env: Optional[Mapping[str, str]] = None,
        log_file: Optional[Path] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.spec = spec
        self.env = dict(env or {})
        self.log_file = Path(log_file) if log_file else None
        self.sleep = sleep

    def find_running(self) -> Optional[int]:
        """Return the pid of a process whose command line matches the pattern."""
        own_pid = os.getpid()
        for proc in psutil.process_iter(["pid", "cmdline"]):
            try:
                cmdline = " ".join(proc.info["cmdline"] or [])
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            if proc.info["pid"] != own_pid and self.spec.pattern in cmdline:
                return proc.info["pid"]
        return None

    def launch(self) -> int:
        """Start the service detached from this process and return its pid."""
        env = dict(os.environ)
        env.update(self.env)
        output = subprocess.DEVNULL
        handle = None
        if self.log_file is not None:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.log_file, "a", encoding="utf-8")
            output = handle
        try:
            proc = subprocess.Popen(
                self.spec.command,
                shell=isinstance(self.spec.command, str),
                stdout=output,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                cwd=self.spec.cwd,
                env=env,
                start_new_session=True,
            )
        finally:
            if handle is not None:
                handle.close()
        return proc.pid

    def check_health(self) -> bool:
        """Default health check: HTTP status below 400, or a live process."""
        if self.spec.health_url:
            try:
                response = requests.get(self.spec.health_url, timeout=5)
            except requests.RequestException as e:
                logger.debug(f"Health check request failed: {e}")
                return False
            return response.status_code < 400
        return self.find_running() is not None

    def ensure_running(
        self,
        health_check: Optional[Callable[[], bool]] = None,
        timeout: Optional[float] = None,
    ) -> EnsureResult:
        """Launch the service unless already running, then verify its health.

        The health check is retried up to ``spec.attempts`` times with
        exponential backoff. ``timeout`` caps the total time spent waiting
        (grace period plus backoff); when a wait would exceed it the service
        is reported UNHEALTHY. Nothing here raises: every problem is reported
        through the returned outcome.
        """
        health_check = health_check or self.check_health
        budget = WaitBudget(timeout)

        pid = self.find_running()
        launched = False
        if pid is not None:
            logger.info(f"Service already running (pid {pid}), not launching")
        else:
            try:
                pid = self.launch()
            except (OSError, ValueError) as e:
                logger.warning(f"Service failed to start: {e}")
                return EnsureResult(
                    ServiceOutcome.START_ERROR, launched=False, message=str(e)
                )
            launched = True
            if not budget.spend(self.spec.grace_seconds):
                return self._out_of_time(launched, pid, 0, timeout)
            logger.info(f"Service launched (pid {pid}), waiting {self.spec.grace_seconds}s")
            self.sleep(self.spec.grace_seconds)

        attempts = max(self.spec.attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                healthy = health_check()
            except Exception as e:
                logger.debug(f"Health check raised: {e}")
                healthy = False
            if healthy:
                return EnsureResult(
                    ServiceOutcome.HEALTHY, launched=launched, pid=pid, attempts=attempt
                )
            if attempt < attempts:
                delay = self.spec.backoff_seconds * (2 ** (attempt - 1))
                if not budget.spend(delay):
                    return self._out_of_time(launched, pid, attempt, timeout)
                logger.debug(f"Health check {attempt}/{attempts} failed, retrying in {delay}s")
                self.sleep(delay)

        message = f"Health check failed after {attempts} attempt(s)"
        logger.warning(message)
        return EnsureResult(
            ServiceOutcome.UNHEALTHY,
            launched=launched,
            pid=pid,
            attempts=attempts,
            message=message,
        )

    def _out_of_time(
        self, launched: bool, pid: Optional[int], attempts: int, timeout: Optional[float]
    ) -> EnsureResult:
        message = f"Service wait exceeds the {timeout:.1f}s left before the run deadline"
        logger.warning(message)
        return EnsureResult(
            ServiceOutcome.UNHEALTHY,
            launched=launched,
            pid=pid,
            attempts=attempts,
            message=message,
        )


class WaitBudget:
    """Tracks planned waits against an optional limit in seconds."""

    def __init__(self, limit: Optional[float] = None):
        self.limit = limit
        self.spent = 0.0

    def spend(self, seconds: float) -> bool:
        """Reserve ``seconds``; False when that would exceed the limit."""
        if self.limit is not None and self.spent + seconds > self.limit:
            return False
        self.spent += seconds
        return True
