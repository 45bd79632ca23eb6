"""External command execution with log capture."""

import logging
import os
import re
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

Command = Union[str, List[str]]

START_ERROR_EXIT = 127
TIMEOUT_EXIT = 124


class FailureKind(str, Enum):
    """Why a step (or stage) did not succeed."""

    START_ERROR = "START_ERROR"
    TIMEOUT = "TIMEOUT"
    NONZERO_EXIT = "NONZERO_EXIT"
    SOFT_WARNING = "SOFT_WARNING"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one external command.

    A command that could not start, timed out, or exited non-zero is never
    an exception: it is a result with a non-zero ``exit_code`` and a
    ``failure_kind``.
    """

    command: str
    exit_code: int
    stdout_log: Optional[Path]
    stderr_log: Optional[Path]
    duration_ms: int
    failure_kind: Optional[FailureKind] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failure_kind is None

    def stderr_tail(self, limit: int = 1000) -> str:
        """Return the last ``limit`` characters written to stderr."""
        return read_tail(self.stderr_log, limit)


def read_tail(path: Optional[Path], limit: int = 1000) -> str:
    if path is None or not path.exists():
        return ""
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()[-limit:]


def safe_log_name(name: str) -> str:
    """Turn an arbitrary stage/step label into a file name component."""
    cleaned = re.sub(r"[^A-Za-z0-9_.-]+", "_", name.strip())
    return cleaned.strip("_") or "command"


class ProcessRunner:
    """Runs external commands, streaming their output into log files.

    Parameters
    ----------
    log_dir : str or Path
        Directory for this run's logs (e.g. ``logs/build_42``)
    env : Mapping[str, str], optional
        Variables layered over the inherited process environment
    cwd : str, optional
        Default working directory for commands

    Example
    -------
    >>> runner = ProcessRunner("logs/build_1", env=context.as_env())
    >>> result = runner.run("python etl/run.py", timeout=600, log_name="etl.run")
    >>> result.ok, result.stdout_log
    """

    def __init__(
        self,
        log_dir: Union[str, Path],
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ):
        self.log_dir = Path(log_dir)
        self.env = dict(env or {})
        self.cwd = cwd

    def _environment(self) -> dict:
        merged = dict(os.environ)
        merged.update(self.env)
        return merged

    def run(
        self,
        command: Command,
        timeout: Optional[float] = None,
        log_name: str = "command",
        cwd: Optional[str] = None,
    ) -> ExecutionResult:
        """Execute ``command`` and classify the outcome.

        Parameters
        ----------
        command : Union[str, List[str]]
            Shell string or argv list
        timeout : float, optional
            Seconds before the process is killed. ``None`` waits forever.
        log_name : str
            Base name of the ``.stdout.log`` / ``.stderr.log`` files
        cwd : str, optional
            Working directory, overriding the runner default

        Returns
        -------
        ExecutionResult
            Always returned, never raised past this method
        """
        display = command if isinstance(command, str) else " ".join(command)
        base = safe_log_name(log_name)
        stdout_log = self.log_dir / f"{base}.stdout.log"
        stderr_log = self.log_dir / f"{base}.stderr.log"
        start = time.monotonic()

        def finish(exit_code, kind=None, error=None) -> ExecutionResult:
            duration_ms = int((time.monotonic() - start) * 1000)
            return ExecutionResult(
                command=display,
                exit_code=exit_code,
                stdout_log=stdout_log,
                stderr_log=stderr_log,
                duration_ms=duration_ms,
                failure_kind=kind,
                error=error,
            )

        if timeout is not None and timeout <= 0:
            return finish(
                TIMEOUT_EXIT, FailureKind.TIMEOUT, "Deadline exceeded before start"
            )

        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(stdout_log, "a", encoding="utf-8") as out, open(
                stderr_log, "a", encoding="utf-8"
            ) as err:
                timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
                out.write(f"# [{timestamp}] $ {display}\n")
                out.flush()
                return self._execute(command, timeout, cwd, out, err, finish)
        except OSError as e:
            logger.debug(f"Could not open logs for '{display}': {e}")
            return finish(START_ERROR_EXIT, FailureKind.START_ERROR, str(e))

    def _execute(self, command, timeout, cwd, out, err, finish) -> ExecutionResult:
        try:
            proc = subprocess.Popen(
                command,
                shell=isinstance(command, str),
                stdout=out,
                stderr=err,
                stdin=subprocess.DEVNULL,
                cwd=cwd or self.cwd,
                env=self._environment(),
            )
        except (OSError, ValueError) as e:
            err.write(f"Failed to start: {e}\n")
            return finish(START_ERROR_EXIT, FailureKind.START_ERROR, f"Failed to start: {e}")

        try:
            returncode = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
            err.write(f"Killed after {timeout:.1f}s timeout\n")
            return finish(
                TIMEOUT_EXIT, FailureKind.TIMEOUT, f"Timed out after {timeout:.1f}s"
            )

        if returncode != 0:
            return finish(
                returncode, FailureKind.NONZERO_EXIT, f"Exit code {returncode}"
            )
        return finish(0)
