"""Execution and classification of a single stage."""

import time
from typing import Callable, List, Optional

from ..io.artifacts import ArtifactArchiver
from ..io.logging import log_json
from ..services.dashboard import DashboardService
from .logger import PipelineLogger
from .process import ExecutionResult, FailureKind, ProcessRunner
from .run import StageResult
from .stage import Stage, StageStatus, Step


class StageRunner:
    """Runs one stage's steps in order and classifies the outcome.

    Classification
    --------------
    - a failing step in a fatal stage -> FAIL, remaining steps skipped
    - a failing step in a ``non_fatal`` stage -> FAIL_SOFT, remaining
      steps still run
    - a failing ``allow_failure`` step -> warning only
    - an unhealthy background service, or one still settling at the run
      deadline -> FAIL_SOFT (never FAIL)
    - otherwise -> PASS

    Stage artifacts are archived whatever the outcome.

    Parameters
    ----------
    runner : ProcessRunner
        Executes each step
    logger : PipelineLogger
        Pipeline logger for stage events
    archiver : ArtifactArchiver, optional
        Receives the stage's artifact patterns after it runs
    build_number : int
        Build whose artifact directory is used
    service_factory : Callable, optional
        Builds the service manager for stages with a ``service``
    clock : Callable[[], float]
        Monotonic clock the deadline is expressed in
    """

    def __init__(
        self,
        runner: ProcessRunner,
        logger: PipelineLogger,
        archiver: Optional[ArtifactArchiver] = None,
        build_number: int = 0,
        service_factory: Optional[Callable[..., DashboardService]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.runner = runner
        self.logger = logger
        self.archiver = archiver
        self.build_number = build_number
        self.service_factory = service_factory or DashboardService
        self.clock = clock

    def _step_timeout(self, step: Step, deadline: Optional[float]) -> Optional[float]:
        """Bound the step's own timeout by the time left before the deadline."""
        if deadline is None:
            return step.timeout
        remaining = deadline - self.clock()
        if step.timeout is None:
            return remaining
        return min(step.timeout, remaining)

    def _record_step(self, stage: Stage, step: Step, result: ExecutionResult) -> None:
        """Append one JSON line per executed step to ``steps.jsonl``."""
        record = {
            "build_number": self.build_number,
            "stage_id": stage.stage_id,
            "step": step.name,
            "exit_code": result.exit_code,
            "duration_ms": result.duration_ms,
            "failure_kind": result.failure_kind.value if result.failure_kind else None,
            "allow_failure": step.allow_failure,
        }
        try:
            log_json(self.runner.log_dir / "steps.jsonl", record)
        except OSError as e:
            self.logger.log_warning(f"Could not record step {stage.stage_id}.{step.name}: {e}")

    def _report_step_failure(self, stage: Stage, step: Step, result: ExecutionResult) -> None:
        tail = result.stderr_tail()
        if step.allow_failure:
            self.logger.log_warning(
                f"[WARN] Step {stage.stage_id}.{step.name} failed ({result.error}), continuing"
            )
        else:
            self.logger.log_error(
                f"Step {stage.stage_id}.{step.name} failed: {result.error} "
                f"[{result.failure_kind.value}]"
            )
        if tail:
            self.logger.log_error(f"STDERR: {tail}")

    def _ensure_service(self, stage: Stage, deadline: Optional[float]) -> Optional[str]:
        """Ensure the stage's background service; return a warning or None."""
        remaining = None if deadline is None else deadline - self.clock()
        if remaining is not None and remaining <= 0:
            return "Service not checked: run deadline reached"

        service = self.service_factory(
            stage.service,
            env=self.runner.env,
            log_file=self.runner.log_dir / f"{stage.stage_id}.service.log",
        )
        outcome = service.ensure_running(timeout=remaining)
        if outcome.ok:
            state = "launched" if outcome.launched else "already running"
            self.logger.log_info(f"Service for stage {stage.stage_id} healthy ({state})")
            return None
        return f"Service {outcome.outcome.value.lower()}: {outcome.message}"

    def run(self, stage: Stage, deadline: Optional[float] = None) -> StageResult:
        """Execute ``stage`` and return its immutable result.

        Parameters
        ----------
        stage : Stage
            Stage definition
        deadline : float, optional
            Run deadline on ``clock``; every step is time-boxed by it

        Returns
        -------
        StageResult
            PASS, FAIL or FAIL_SOFT
        """
        self.logger.log_stage_start(stage.stage_id, stage.name)
        start_time = self.clock()
        step_results: List[ExecutionResult] = []
        failure: Optional[ExecutionResult] = None

        for step in stage.steps:
            self.logger.log_debug(f"$ {step.display_command()}")
            result = self.runner.run(
                step.command,
                timeout=self._step_timeout(step, deadline),
                log_name=f"{stage.stage_id}.{step.name}",
                cwd=step.cwd,
            )
            step_results.append(result)
            self._record_step(stage, step, result)
            if result.ok:
                continue

            self._report_step_failure(stage, step, result)
            if step.allow_failure:
                continue
            if failure is None:
                failure = result
            if not stage.non_fatal:
                break

        warning = None
        if stage.service is not None and (failure is None or stage.non_fatal):
            warning = self._ensure_service(stage, deadline)

        if self.archiver is not None and stage.artifacts:
            self.archiver.archive(self.build_number, stage.stage_id, stage.artifacts)

        duration = self.clock() - start_time
        log_ref = str(self.runner.log_dir)

        if failure is not None and not stage.non_fatal:
            status = StageStatus.FAIL
            error, kind = failure.error, failure.failure_kind
            self.logger.log_stage_error(stage.stage_id, error)
        elif failure is not None or warning is not None:
            status = StageStatus.FAIL_SOFT
            error = failure.error if failure is not None else warning
            kind = FailureKind.SOFT_WARNING
            self.logger.log_stage_warning(stage.stage_id, error)
        else:
            status = StageStatus.PASS
            error, kind = None, None
            self.logger.log_stage_complete(stage.stage_id, duration)

        return StageResult(
            stage_id=stage.stage_id,
            stage_name=stage.name,
            status=status,
            duration=duration,
            log_ref=log_ref,
            error=error,
            failure_kind=kind,
            steps=tuple(step_results),
        )
