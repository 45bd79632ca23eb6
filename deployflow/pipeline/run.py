"""Run and stage result records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .process import ExecutionResult, FailureKind
from .stage import StageStatus


class RunStatus(str, Enum):
    """Lifecycle status of a run. Everything except PENDING is terminal."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    UNSTABLE = "UNSTABLE"


class RunStateError(RuntimeError):
    """Raised when a run is mutated after reaching a terminal status."""

    pass


@dataclass(frozen=True)
class StageResult:
    """Immutable outcome of one stage within one run.

    Attributes
    ----------
    stage_id : str
        Identifier of the stage that produced this result
    stage_name : str
        Human-readable stage name
    status : StageStatus
        PASS, FAIL or FAIL_SOFT
    duration : float
        Elapsed wall-clock seconds
    log_ref : str, optional
        Directory holding the stage's step logs
    error : str, optional
        Error message of the failing step, or the soft warning
    failure_kind : str, optional
        START_ERROR, TIMEOUT, NONZERO_EXIT or SOFT_WARNING
    steps : Tuple[ExecutionResult, ...]
        Results of the steps that actually ran
    """

    stage_id: str
    stage_name: str
    status: StageStatus
    duration: float = 0.0
    log_ref: Optional[str] = None
    error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    steps: Tuple[ExecutionResult, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage_id": self.stage_id,
            "stage_name": self.stage_name,
            "status": self.status.value,
            "duration": round(self.duration, 3),
            "log_ref": self.log_ref,
            "error": self.error,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "steps": len(self.steps),
        }


@dataclass
class Run:
    """One end-to-end execution of the stage sequence.

    Only the orchestrator mutates a Run, and only through ``record`` and
    ``finish``. Both raise ``RunStateError`` once a terminal status is set.
    """

    build_number: int
    job_name: str
    timeout_seconds: float
    deadline: float
    started_at: datetime = field(default_factory=datetime.now)
    build_url: Optional[str] = None
    console_log: Optional[Path] = None
    status: RunStatus = RunStatus.PENDING
    results: List[StageResult] = field(default_factory=list)
    failure_reason: Optional[str] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not RunStatus.PENDING

    @property
    def failing_stage(self) -> Optional[StageResult]:
        """First stage whose result is FAIL, not necessarily the last attempted."""
        for result in self.results:
            if result.status is StageStatus.FAIL:
                return result
        return None

    @property
    def elapsed_seconds(self) -> float:
        end = self.finished_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def _check_mutable(self) -> None:
        if self.is_terminal:
            raise RunStateError(
                f"Build #{self.build_number} is already {self.status.value}"
            )

    def record(self, result: StageResult) -> None:
        self._check_mutable()
        self.results.append(result)

    def finish(self, status: RunStatus, reason: Optional[str] = None) -> None:
        """Assign the terminal status exactly once."""
        if status is RunStatus.PENDING:
            raise ValueError("PENDING is not a terminal status")
        self._check_mutable()
        self.status = status
        self.failure_reason = reason
        self.finished_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        failing = self.failing_stage
        return {
            "job_name": self.job_name,
            "build_number": self.build_number,
            "build_url": self.build_url,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "timeout_seconds": self.timeout_seconds,
            "failing_stage": failing.stage_id if failing else None,
            "failure_reason": self.failure_reason,
            "stages": [result.to_dict() for result in self.results],
        }
