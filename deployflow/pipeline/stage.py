"""Stage and step representation for pipeline execution."""

import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class StageStatus(str, Enum):
    """Outcome of running one stage within one run."""

    PASS = "PASS"
    FAIL = "FAIL"
    FAIL_SOFT = "FAIL_SOFT"


@dataclass
class Step:
    """A single external command invocation within a stage.

    Attributes
    ----------
    name : str
        Step name, used to key its log files
    command : Union[str, List[str]]
        Shell command string, or an argv list executed without a shell
    timeout : float, optional
        Per-step timeout in seconds (further bounded by the run deadline)
    allow_failure : bool
        If True, a failing step is logged as a warning and the stage
        continues as if it had passed
    cwd : str, optional
        Working directory for the command
    """

    name: str
    command: Union[str, List[str]]
    timeout: Optional[float] = None
    allow_failure: bool = False
    cwd: Optional[str] = None

    def display_command(self) -> str:
        """Return the command as a single printable string."""
        if isinstance(self.command, str):
            return self.command
        return " ".join(shlex.quote(part) for part in self.command)

    @classmethod
    def from_dict(cls, data: Union[str, Dict[str, Any]], index: int) -> "Step":
        """Create Step from a dictionary or a bare command string.

        Parameters
        ----------
        data : Union[str, Dict[str, Any]]
            Step definition. A plain string is treated as the command.
        index : int
            Position of the step within its stage, used for the default name

        Returns
        -------
        Step
            Constructed step object
        """
        if isinstance(data, str):
            return cls(name=f"step{index + 1}", command=data)

        if "command" not in data:
            raise KeyError(f"Step {index + 1} missing required field 'command'")

        timeout = data.get("timeout")
        return cls(
            name=data.get("name", f"step{index + 1}"),
            command=data["command"],
            timeout=float(timeout) if timeout is not None else None,
            allow_failure=data.get("allow_failure", False),
            cwd=data.get("cwd"),
        )


@dataclass
class ServiceSpec:
    """Long-lived background service started by a stage.

    Attributes
    ----------
    command : Union[str, List[str]]
        Command that launches the service
    pattern : str
        Substring matched against running process command lines to detect
        an existing instance
    health_url : str, optional
        HTTP endpoint polled after launch. Without it, the health check
        only confirms a matching process is alive.
    grace_seconds : float
        Startup grace period before the first health check
    attempts : int
        Maximum number of health check attempts
    backoff_seconds : float
        Base delay between health check attempts (doubled every retry)
    """

    command: Union[str, List[str]]
    pattern: str
    health_url: Optional[str] = None
    grace_seconds: float = 5.0
    attempts: int = 3
    backoff_seconds: float = 2.0
    cwd: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceSpec":
        for key in ("command", "pattern"):
            if key not in data:
                raise KeyError(f"Service definition missing required field '{key}'")
        return cls(
            command=data["command"],
            pattern=data["pattern"],
            health_url=data.get("health_url"),
            grace_seconds=float(data.get("grace_seconds", 5.0)),
            attempts=int(data.get("attempts", 3)),
            backoff_seconds=float(data.get("backoff_seconds", 2.0)),
            cwd=data.get("cwd"),
        )


@dataclass
class Stage:
    """Static definition of a named, ordered unit of pipeline work.

    Attributes
    ----------
    name : str
        Human-readable stage name (e.g., "Database Setup")
    stage_id : str
        Short identifier used for log and artifact names (e.g., "db_setup")
    steps : List[Step]
        Commands executed in declared order
    non_fatal : bool
        If True, failing steps degrade the stage to FAIL_SOFT instead of
        aborting the run
    artifacts : List[str]
        Glob patterns archived after the stage, whatever its outcome
    record_metrics : bool
        If True, a metrics record is written once the stage passes
    service : ServiceSpec, optional
        Background service ensured after the steps have run

    Example
    -------
    >>> stage = Stage(
    ...     name="ETL",
    ...     stage_id="etl",
    ...     steps=[Step(name="run", command="python etl/run.py")],
    ...     artifacts=["data/processed/**"],
    ... )
    >>> valid, errors = stage.validate()
    """

    name: str
    stage_id: str
    steps: List[Step] = field(default_factory=list)
    non_fatal: bool = False
    artifacts: List[str] = field(default_factory=list)
    record_metrics: bool = False
    service: Optional[ServiceSpec] = None

    def validate(self) -> Tuple[bool, List[str]]:
        """Check the stage definition is runnable.

        Returns
        -------
        Tuple[bool, List[str]]
            (success, errors) where errors describes each problem found
        """
        errors = []

        if not self.steps and self.service is None:
            errors.append(f"Stage '{self.stage_id}' has no steps")

        seen = set()
        for step in self.steps:
            if step.name in seen:
                errors.append(
                    f"Stage '{self.stage_id}' has duplicate step name '{step.name}'"
                )
            seen.add(step.name)
            if not step.command:
                errors.append(
                    f"Step '{step.name}' in stage '{self.stage_id}' has an empty command"
                )

        return (len(errors) == 0, errors)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], stage_id: str) -> "Stage":
        """Create Stage from dictionary.

        Parameters
        ----------
        data : Dict[str, Any]
            Stage configuration dictionary
        stage_id : str
            Stage identifier

        Returns
        -------
        Stage
            Constructed stage object
        """
        service = data.get("service")
        return cls(
            name=data.get("name", stage_id),
            stage_id=stage_id,
            steps=[Step.from_dict(s, i) for i, s in enumerate(data.get("steps", []))],
            non_fatal=data.get("non_fatal", False),
            artifacts=list(data.get("artifacts", [])),
            record_metrics=data.get("record_metrics", False),
            service=ServiceSpec.from_dict(service) if service else None,
        )
