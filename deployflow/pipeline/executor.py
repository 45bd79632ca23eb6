"""Pipeline orchestration: stage sequencing, global timeout and run lifecycle."""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..config.environment import ConfigurationError, EnvironmentContext
from ..io.artifacts import ArtifactArchiver, build_dir_name, list_build_dirs
from ..io.report import MetricsRecorder, export_run_summary
from .config import PipelineConfig
from .hooks import CommandHook, PostActionDispatcher
from .logger import PipelineLogger
from .process import ProcessRunner
from .run import Run, RunStatus
from .stage import StageStatus
from .stage_runner import StageRunner

HISTORY_LIMIT = 50


class PipelineOrchestrator:
    """Runs the configured stages strictly in order and owns the Run.

    State machine
    -------------
    ``INIT -> RUNNING(i) -> SUCCESS | FAILURE | UNSTABLE``

    - a FAIL result halts the run; later stages never start
    - the global deadline is checked before every stage and bounds every
      step timeout and service wait; a stage that finishes is never
      failed afterwards for the time it took
    - FAIL_SOFT results let the run continue and end UNSTABLE
    - only a run whose every stage passed is SUCCESS

    After the terminal state the run-end artifact sweep, the run summary
    export and the post actions happen exactly once.

    Parameters
    ----------
    config : PipelineConfig
        Loaded configuration with parsed stages
    logger : PipelineLogger
        Initialized PipelineLogger instance
    dispatcher : PostActionDispatcher, optional
        Post hooks; an empty dispatcher is used when omitted
    metrics : MetricsRecorder, optional
        Writes the metrics record after a ``record_metrics`` stage passes
    state_file : str, optional
        JSON file holding the last build number and recent history
    environ : Mapping[str, str], optional
        Environment used to resolve the context (defaults to os.environ)
    runner_factory : Callable, optional
        Builds the ProcessRunner for a run (``log_dir, env=, cwd=``)
    service_factory : Callable, optional
        Passed through to StageRunner for background services
    clock : Callable[[], float]
        Monotonic clock used for the deadline

    Example
    -------
    >>> config = PipelineConfig("pipeline.yaml")
    >>> config.load()
    >>> config.parse_stages()
    >>> logger = PipelineLogger()
    >>> logger.setup()
    >>> orchestrator = PipelineOrchestrator.from_config(config, logger)
    >>> run = orchestrator.run()
    >>> run.status
    <RunStatus.SUCCESS: 'SUCCESS'>
    """

    def __init__(
        self,
        config: PipelineConfig,
        logger: PipelineLogger,
        dispatcher: Optional[PostActionDispatcher] = None,
        metrics: Optional[MetricsRecorder] = None,
        state_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        runner_factory: Optional[Callable[..., ProcessRunner]] = None,
        service_factory: Optional[Callable] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.logger = logger
        self.dispatcher = dispatcher or PostActionDispatcher()
        self.metrics = metrics
        self.state_file = Path(state_file) if state_file else config.state_file
        self.environ = environ
        self.runner_factory = runner_factory or ProcessRunner
        self.service_factory = service_factory
        self.clock = clock
        self.archiver = ArtifactArchiver(config.artifacts_dir, workspace=config.workspace)
        self.last_build_number = 0
        self.history: List[Dict[str, Any]] = []

    @classmethod
    def from_config(
        cls, config: PipelineConfig, logger: PipelineLogger, **kwargs
    ) -> "PipelineOrchestrator":
        """Wire the orchestrator with notification, post commands and metrics."""
        import os

        from ..notify.service import EmailSender, NotificationService

        notifications = config.notifications
        password_env = notifications.get("password_env")
        sender = EmailSender.from_config(
            notifications, password=os.environ.get(password_env) if password_env else None
        )
        notifier = NotificationService(
            sender, default_recipient=notifications.get("recipient")
        )

        dispatcher = PostActionDispatcher()
        dispatcher.register("failure", notifier.notify)
        for hook_set, commands in config.post_commands.items():
            for index, command in enumerate(commands):
                dispatcher.register(
                    hook_set,
                    CommandHook(
                        command,
                        name=f"{hook_set}{index + 1}",
                        logs_dir=config.logs_dir,
                        workspace=str(config.workspace),
                    ),
                )

        metrics_settings = config.metrics
        metrics_path = Path(metrics_settings["path"])
        if not metrics_path.is_absolute():
            metrics_path = config.workspace / metrics_path
        metrics = MetricsRecorder(
            metrics_path, count_command=metrics_settings.get("count_command")
        )

        kwargs.setdefault("dispatcher", dispatcher)
        kwargs.setdefault("metrics", metrics)
        return cls(config, logger, **kwargs)

    # ------------------------------------------------------------------
    # Build state
    # ------------------------------------------------------------------

    def _last_build_on_disk(self) -> int:
        """Highest ``build_N`` directory under the log and artifact roots."""
        return max(
            (
                number
                for root in (self.config.logs_dir, self.config.artifacts_dir)
                for number, _ in list_build_dirs(root)
            ),
            default=0,
        )

    def load_state(self) -> None:
        """Load the last build number and history from the state file.

        The build directories on disk also count, so a lost or stale state
        file never hands out a number that already has logs or artifacts.
        """
        on_disk = self._last_build_on_disk()
        recorded = 0
        if not self.state_file.exists():
            self.logger.log_debug("No state file found")
        else:
            try:
                with open(self.state_file, "r") as f:
                    state = json.load(f)
            except (OSError, ValueError) as e:
                self.logger.log_warning(f"Failed to load state file: {e}")
            else:
                recorded = int(state.get("last_build_number", 0))
                self.history = state.get("history", [])

        if on_disk > recorded:
            self.logger.log_warning(
                f"Build directories reach #{on_disk} but the state file records "
                f"#{recorded}; continuing after #{on_disk}"
            )
        self.last_build_number = max(recorded, on_disk)

    def save_state(self, run: Run) -> None:
        """Persist the finished run's number and status."""
        self.last_build_number = max(self.last_build_number, run.build_number)
        self.history.append(
            {
                "build_number": run.build_number,
                "status": run.status.value,
                "finished_at": run.finished_at.isoformat() if run.finished_at else None,
            }
        )
        self.history = self.history[-HISTORY_LIMIT:]
        state = {
            "last_build_number": self.last_build_number,
            "history": self.history,
            "timestamp": datetime.now().isoformat(),
        }

        self.state_file.parent.mkdir(parents=True, exist_ok=True)

        with open(self.state_file, "w") as f:
            json.dump(state, f, indent=2)

    def next_build_number(self, requested: Optional[int] = None) -> int:
        """Allocate a build number greater than every previous one."""
        if requested is None:
            return self.last_build_number + 1
        if requested <= self.last_build_number:
            raise ValueError(
                f"Build number {requested} is not greater than last build "
                f"#{self.last_build_number}"
            )
        return requested

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _skip_remaining(self, order: List[str], start: int, reason: str) -> None:
        for stage_id in order[start:]:
            self.logger.log_stage_skipped(stage_id, reason)

    def _execute_stages(self, run: Run, context: EnvironmentContext, log_dir: Path) -> None:
        runner = self.runner_factory(
            log_dir, env=context.as_env(), cwd=str(self.config.workspace)
        )
        stage_runner = StageRunner(
            runner,
            self.logger,
            archiver=self.archiver,
            build_number=run.build_number,
            service_factory=self.service_factory,
            clock=self.clock,
        )
        order = self.config.get_execution_order()
        timeout_str = PipelineLogger.format_duration(run.timeout_seconds)

        for index, stage_id in enumerate(order):
            if self.clock() >= run.deadline:
                reason = f"Global timeout of {timeout_str} exceeded before stage {stage_id}"
                self.logger.log_error(reason)
                self._skip_remaining(order, index, "global timeout")
                run.finish(RunStatus.FAILURE, reason)
                return

            stage = self.config.stages[stage_id]
            result = stage_runner.run(stage, deadline=run.deadline)
            run.record(result)

            if result.status is StageStatus.FAIL:
                self._skip_remaining(order, index + 1, f"stage {stage_id} failed")
                run.finish(RunStatus.FAILURE, f"Stage {stage_id} failed: {result.error}")
                return

            if stage.record_metrics and result.status is StageStatus.PASS and self.metrics:
                try:
                    self.metrics.record(run, "SUCCESS", runner)
                except OSError as e:
                    self.logger.log_warning(f"Could not write metrics record: {e}")

        if any(r.status is StageStatus.FAIL_SOFT for r in run.results):
            run.finish(RunStatus.UNSTABLE)
        else:
            run.finish(RunStatus.SUCCESS)

    def _finalize(self, run: Run, context: Optional[EnvironmentContext]) -> None:
        self.logger.log_run_status(run.build_number, run.status.value, run.elapsed_seconds)

        self.archiver.archive(run.build_number, "run", self.config.sweep_patterns)
        try:
            export_run_summary(run, self.archiver.build_dir(run.build_number))
        except OSError as e:
            self.logger.log_warning(f"Could not export run summary: {e}")

        try:
            self.save_state(run)
        except OSError as e:
            self.logger.log_warning(f"Could not save state file: {e}")

        self.dispatcher.dispatch(run, context)

    def run(
        self,
        build_number: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Run:
        """Execute the pipeline once and return the finished Run.

        Parameters
        ----------
        build_number : int, optional
            Explicit build number; must exceed the last recorded build
        timeout_seconds : float, optional
            Override of the configured global timeout

        Returns
        -------
        Run
            Run in a terminal state (SUCCESS, FAILURE or UNSTABLE)
        """
        self.load_state()
        number = self.next_build_number(build_number)
        timeout = timeout_seconds if timeout_seconds is not None else self.config.timeout_seconds

        keep = self.config.keep_builds
        pruned = self.archiver.prune(keep - 1, extra_roots=[self.config.logs_dir])
        if pruned:
            self.logger.log_info(f"Pruned {len(pruned)} old build director(ies), keeping {keep}")

        log_dir = self.config.logs_dir / build_dir_name(number)
        console_log = self.logger.attach_run_log(log_dir / "console.log")
        build_url = self.config.build_url(number)

        run = Run(
            build_number=number,
            job_name=self.config.job_name,
            timeout_seconds=timeout,
            deadline=self.clock() + timeout,
            build_url=build_url,
            console_log=console_log,
        )
        order = self.config.get_execution_order()
        self.logger.log_info(f"Build #{number} of {run.job_name}: {' -> '.join(order)}")

        context: Optional[EnvironmentContext] = None
        try:
            context = EnvironmentContext.resolve(
                self.config.environment,
                environ=self.environ,
                job_name=run.job_name,
                build_number=number,
                build_url=build_url,
                workspace=str(self.config.workspace),
            )
        except ConfigurationError as e:
            self.logger.log_error(f"Environment resolution failed: {e}")
            self._skip_remaining(order, 0, "environment not resolved")
            run.finish(RunStatus.FAILURE, str(e))
        else:
            self.logger.log_debug(f"Environment: {context.describe()}")
            try:
                self._execute_stages(run, context, log_dir)
            except Exception as e:
                self.logger.log_error(f"Pipeline aborted: {type(e).__name__}: {e}")
                if not run.is_terminal:
                    run.finish(RunStatus.FAILURE, f"Pipeline aborted: {e}")

        try:
            self._finalize(run, context)
        finally:
            self.logger.detach_run_log()
        return run
