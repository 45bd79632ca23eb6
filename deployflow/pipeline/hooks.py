"""Post-run hook dispatch."""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..config.environment import EnvironmentContext
from ..io.artifacts import build_dir_name
from .process import ProcessRunner
from .run import Run, RunStatus

logger = logging.getLogger(__name__)

Hook = Callable[[Run, Optional[EnvironmentContext]], Any]

HOOK_SETS = ("always", "success", "failure", "unstable")

STATUS_HOOK_SET = {
    RunStatus.SUCCESS: "success",
    RunStatus.FAILURE: "failure",
    RunStatus.UNSTABLE: "unstable",
}


class CommandHook:
    """Runs a shell command as a post-run hook.

    Output goes to ``<logs_dir>/build_<n>/post.<name>.*.log``. A failing
    command raises, which the dispatcher logs as a hook failure.
    """

    def __init__(
        self,
        command: Union[str, List[str]],
        name: str,
        logs_dir: Union[str, Path],
        workspace: Optional[str] = None,
        timeout: Optional[float] = 300.0,
    ):
        self.command = command
        self.name = name
        self.logs_dir = Path(logs_dir)
        self.workspace = workspace
        self.timeout = timeout

    def __call__(self, run: Run, context: Optional[EnvironmentContext]) -> None:
        runner = ProcessRunner(
            self.logs_dir / build_dir_name(run.build_number),
            env=context.as_env() if context else None,
            cwd=self.workspace,
        )
        result = runner.run(self.command, timeout=self.timeout, log_name=f"post.{self.name}")
        if not result.ok:
            raise RuntimeError(f"{result.command}: {result.error}")

    def __repr__(self) -> str:
        return f"CommandHook({self.name!r})"


def _hook_name(hook: Hook) -> str:
    return getattr(hook, "__name__", None) or repr(hook)


class PostActionDispatcher:
    """Fires the hook sets matching a run's terminal status.

    ``always`` hooks fire for every run, followed by exactly one of
    ``success``, ``failure`` or ``unstable``. Every hook is best-effort:
    its exceptions are logged and never change the run's status.

    Example
    -------
    >>> dispatcher = PostActionDispatcher()
    >>> dispatcher.register("failure", notifier.notify)
    >>> dispatcher.dispatch(run, context)
    ['always', 'failure']
    """

    def __init__(self):
        self.hooks: Dict[str, List[Hook]] = {name: [] for name in HOOK_SETS}
        self._dispatched = set()

    def register(self, hook_set: str, hook: Hook) -> None:
        if hook_set not in self.hooks:
            raise ValueError(
                f"Unknown hook set '{hook_set}', expected one of {', '.join(HOOK_SETS)}"
            )
        self.hooks[hook_set].append(hook)

    def _fire(self, hook_set: str, run: Run, context: Optional[EnvironmentContext]) -> int:
        failures = 0
        for hook in self.hooks[hook_set]:
            try:
                hook(run, context)
            except Exception as e:
                failures += 1
                logger.warning(f"Post hook '{_hook_name(hook)}' ({hook_set}) failed: {e}")
        return failures

    def dispatch(
        self, run: Run, context: Optional[EnvironmentContext] = None
    ) -> List[str]:
        """Run the hook sets for ``run`` once.

        Returns
        -------
        List[str]
            Names of the hook sets that fired, in order
        """
        if not run.is_terminal:
            raise ValueError(f"Build #{run.build_number} has not finished")
        if run.build_number in self._dispatched:
            logger.warning(f"Post actions for build #{run.build_number} already ran")
            return []
        self._dispatched.add(run.build_number)

        fired = []
        for hook_set in ("always", STATUS_HOOK_SET[run.status]):
            failures = self._fire(hook_set, run, context)
            fired.append(hook_set)
            logger.debug(
                f"Post '{hook_set}': {len(self.hooks[hook_set])} hook(s), {failures} failed"
            )
        return fired
