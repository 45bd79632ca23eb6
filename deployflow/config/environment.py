"""Run-wide environment context.

Resolves database credentials, the notification recipient and the
interpreter path exactly once per run. The resulting context is frozen and
passed explicitly to every component that launches commands.

Example
-------
>>> context = EnvironmentContext.resolve(
...     {"db_host": "localhost", "db_port": 5432},
...     job_name="etl-dashboard",
...     build_number=7,
... )
>>> context.as_env()["DB_HOST"]
'localhost'
"""

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional


class ConfigurationError(Exception):
    """Raised when required configuration values cannot be resolved."""

    pass


# field name -> environment variable that overrides it
REQUIRED_VARIABLES: Dict[str, str] = {
    "db_host": "DB_HOST",
    "db_port": "DB_PORT",
    "db_name": "DB_NAME",
    "db_user": "DB_USER",
    "db_password": "DB_PASSWORD",
    "notify_recipient": "NOTIFY_EMAIL",
    "python": "PYTHON",
}


@dataclass(frozen=True)
class EnvironmentContext:
    """Immutable configuration shared by all stages of one run.

    Attributes
    ----------
    db_host, db_port, db_name, db_user, db_password : str
        Data store connection settings
    notify_recipient : str
        Address that receives failure notifications
    python : str
        Interpreter used by pipeline scripts
    job_name : str
        Pipeline (job) name
    build_number : int
        Build number of the current run
    build_url : str, optional
        Link to the run's console output
    workspace : str
        Working directory commands run in
    extra : Mapping[str, str]
        Additional read-only variables exported to commands
    """

    db_host: str
    db_port: str
    db_name: str
    db_user: str
    db_password: str
    notify_recipient: str
    python: str
    job_name: str = "pipeline"
    build_number: int = 0
    build_url: Optional[str] = None
    workspace: str = "."
    extra: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def resolve(
        cls,
        settings: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
        job_name: str = "pipeline",
        build_number: int = 0,
        build_url: Optional[str] = None,
        workspace: str = ".",
    ) -> "EnvironmentContext":
        """Build the context from configuration defaults and the OS environment.

        Environment variables take precedence over ``settings``. Keys in
        ``settings`` that are not known fields are exported to commands
        unchanged under their upper-cased name.

        Raises
        ------
        ConfigurationError
            If any required value is missing or empty
        """
        settings = dict(settings or {})
        environ = os.environ if environ is None else environ

        values: Dict[str, str] = {}
        missing: List[str] = []
        for key, env_var in REQUIRED_VARIABLES.items():
            value = environ.get(env_var)
            if value in (None, ""):
                value = settings.get(key)
            if value is None or str(value) == "":
                missing.append(f"{key} ({env_var})")
            else:
                values[key] = str(value)

        if missing:
            raise ConfigurationError(
                "Unresolved environment values: " + ", ".join(missing)
            )

        extra = {
            str(key).upper(): str(value)
            for key, value in settings.items()
            if key not in REQUIRED_VARIABLES and value is not None
        }

        return cls(
            job_name=job_name,
            build_number=build_number,
            build_url=build_url,
            workspace=workspace,
            extra=MappingProxyType(extra),
            **values,
        )

    def as_env(self) -> Dict[str, str]:
        """Return the variables exported to every command."""
        env = dict(self.extra)
        for key, env_var in REQUIRED_VARIABLES.items():
            env[env_var] = getattr(self, key)
        env["BUILD_NUMBER"] = str(self.build_number)
        env["JOB_NAME"] = self.job_name
        env["WORKSPACE"] = self.workspace
        if self.build_url:
            env["BUILD_URL"] = self.build_url
        return env

    def describe(self) -> Dict[str, str]:
        """Loggable view of the context with the password masked."""
        env = self.as_env()
        env["DB_PASSWORD"] = "****"
        return env
