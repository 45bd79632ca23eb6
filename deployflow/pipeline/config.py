"""Pipeline configuration loader and validator."""

import re
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from .hooks import HOOK_SETS
from .stage import Stage

DEFAULT_TIMEOUT_MINUTES = 30
DEFAULT_KEEP_BUILDS = 10
DEFAULT_SWEEP = ["logs/**", "data/processed/**", "reports/**", "dashboard/**"]


class PipelineConfig:
    """Loads and manages pipeline configuration from YAML files.

    Stages run in the order they are declared under ``stages``. String
    values may reference other settings with ``{section.key}`` templates.

    Parameters
    ----------
    config_path : str
        Path to the YAML configuration file

    Attributes
    ----------
    config_path : Path
        Path to the configuration file
    raw_config : Dict[str, Any]
        Raw configuration dictionary loaded from YAML
    stages : Dict[str, Stage]
        Stages keyed by stage_id, in execution order
    global_settings : Dict[str, Any]
        The ``pipeline`` and ``global`` sections

    Example
    -------
    >>> config = PipelineConfig("pipeline.yaml")
    >>> config.load()
    >>> config.parse_stages()
    >>> valid, errors = config.validate()
    >>> order = config.get_execution_order()
    """

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self.raw_config: Dict[str, Any] = {}
        self.stages: Dict[str, Stage] = {}
        self.global_settings: Dict[str, Any] = {}

    def load(self) -> None:
        """Load YAML configuration file.

        Raises
        ------
        FileNotFoundError
            If config file doesn't exist
        yaml.YAMLError
            If YAML is malformed
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, "r") as f:
            self.raw_config = yaml.safe_load(f) or {}

        self.global_settings = {
            "pipeline": self.raw_config.get("pipeline", {}),
            "global": self.raw_config.get("global", {}),
        }

    def parse_stages(self) -> None:
        """Convert YAML stage definitions to Stage objects.

        Step commands, working directories and artifact patterns have their
        templates resolved.

        Raises
        ------
        KeyError
            If required stage fields are missing
        """
        if "stages" not in self.raw_config:
            raise KeyError("No 'stages' section in configuration")

        self.stages = {}
        for stage_id, stage_def in self.raw_config["stages"].items():
            stage_def = dict(stage_def or {})
            if not stage_def.get("steps") and not stage_def.get("service"):
                raise KeyError(f"Stage '{stage_id}' missing required field 'steps'")

            stage_def["steps"] = [
                self._resolve_step(step) for step in stage_def.get("steps", [])
            ]
            stage_def["artifacts"] = [
                self.resolve_paths(p) for p in stage_def.get("artifacts", [])
            ]
            if stage_def.get("service"):
                stage_def["service"] = self._resolve_values(stage_def["service"])

            self.stages[stage_id] = Stage.from_dict(stage_def, stage_id)

    def _resolve_step(self, step: Any) -> Any:
        if isinstance(step, str):
            return self.resolve_paths(step)
        return self._resolve_values(step)

    def _resolve_values(self, data: Dict[str, Any]) -> Dict[str, Any]:
        resolved = {}
        for key, value in data.items():
            if isinstance(value, str):
                resolved[key] = self.resolve_paths(value)
            elif isinstance(value, list):
                resolved[key] = [
                    self.resolve_paths(v) if isinstance(v, str) else v for v in value
                ]
            else:
                resolved[key] = value
        return resolved

    def resolve_paths(self, path_template: str) -> str:
        """Resolve templates like {global.python} or {pipeline.name}.

        Templates can reference any scalar in the configuration by its
        dotted path. Unknown references (including shell ``${VAR}``
        expansions) are left untouched.

        Parameters
        ----------
        path_template : str
            String possibly containing {...} templates

        Returns
        -------
        str
            String with known templates replaced by their values
        """
        if "{" not in path_template:
            return path_template

        pattern = r"\{([^}]+)\}"

        def replace_template(match):
            ref = match.group(1)
            parts = ref.split(".")

            value = self.raw_config
            for part in parts:
                if isinstance(value, dict):
                    value = value.get(part, {})
                else:
                    return match.group(0)

            if value is None or value == {} or isinstance(value, (dict, list)):
                return match.group(0)
            return str(value)

        resolved = re.sub(pattern, replace_template, path_template)

        if resolved != path_template and "{" in resolved:
            return self.resolve_paths(resolved)

        return resolved

    def validate(self) -> Tuple[bool, List[str]]:
        """Validate stage definitions and post hook sets.

        Returns
        -------
        Tuple[bool, List[str]]
            (valid, errors) where valid is True if nothing is wrong
        """
        errors = []

        if not self.stages:
            errors.append("Pipeline defines no stages")

        for stage in self.stages.values():
            _, stage_errors = stage.validate()
            errors.extend(stage_errors)

        for hook_set in self.post_commands:
            if hook_set not in HOOK_SETS:
                errors.append(f"Unknown post hook set '{hook_set}'")

        if self.timeout_seconds <= 0:
            errors.append("Pipeline timeout must be positive")

        return (len(errors) == 0, errors)

    def get_execution_order(self) -> List[str]:
        """Stage ids in declaration order."""
        return list(self.stages.keys())

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @property
    def pipeline_settings(self) -> Dict[str, Any]:
        return self.raw_config.get("pipeline", {}) or {}

    @property
    def job_name(self) -> str:
        return str(self.pipeline_settings.get("name", "pipeline"))

    @property
    def timeout_seconds(self) -> float:
        settings = self.pipeline_settings
        if "timeout_seconds" in settings:
            return float(settings["timeout_seconds"])
        return float(settings.get("timeout_minutes", DEFAULT_TIMEOUT_MINUTES)) * 60

    @property
    def keep_builds(self) -> int:
        return int(self.pipeline_settings.get("keep_builds", DEFAULT_KEEP_BUILDS))

    @property
    def workspace(self) -> Path:
        base = self.config_path.parent
        workspace = self.pipeline_settings.get("workspace")
        if workspace is None:
            return base
        workspace = Path(self.resolve_paths(str(workspace)))
        return workspace if workspace.is_absolute() else base / workspace

    def _workspace_path(self, key: str, default: str) -> Path:
        path = Path(self.resolve_paths(str(self.pipeline_settings.get(key, default))))
        return path if path.is_absolute() else self.workspace / path

    @property
    def logs_dir(self) -> Path:
        return self._workspace_path("logs_dir", "logs")

    @property
    def artifacts_dir(self) -> Path:
        return self._workspace_path("artifacts_dir", "artifacts")

    @property
    def state_file(self) -> Path:
        return self._workspace_path("state_file", ".deployflow_state.json")

    def build_url(self, build_number: int) -> str:
        """Render ``pipeline.build_url`` for a build ({job_name}, {build_number})."""
        template = self.pipeline_settings.get("build_url")
        if not template:
            return f"file://{self.logs_dir.resolve()}/build_{build_number}/console.log"
        return self.resolve_paths(str(template)).format(
            job_name=self.job_name, build_number=build_number
        )

    @property
    def environment(self) -> Dict[str, Any]:
        section = self.raw_config.get("environment", {}) or {}
        return {
            key: self.resolve_paths(value) if isinstance(value, str) else value
            for key, value in section.items()
        }

    @property
    def notifications(self) -> Dict[str, Any]:
        return dict(self.raw_config.get("notifications", {}) or {})

    @property
    def sweep_patterns(self) -> List[str]:
        patterns = self.raw_config.get("artifacts", {}) or {}
        return [self.resolve_paths(p) for p in patterns.get("always", DEFAULT_SWEEP)]

    @property
    def metrics(self) -> Dict[str, Any]:
        section = dict(self.raw_config.get("metrics", {}) or {})
        if "count_command" in section:
            section["count_command"] = self.resolve_paths(section["count_command"])
        section.setdefault("path", "reports/deployment_metrics.txt")
        return section

    @property
    def post_commands(self) -> Dict[str, List[str]]:
        section = self.raw_config.get("post", {}) or {}
        return {
            hook_set: [self.resolve_paths(c) for c in (commands or [])]
            for hook_set, commands in section.items()
        }

    @classmethod
    def from_dict(
        cls, config_dict: Dict[str, Any], base_dir: str = "."
    ) -> "PipelineConfig":
        """Create PipelineConfig from dictionary.

        Parameters
        ----------
        config_dict : Dict[str, Any]
            Configuration dictionary
        base_dir : str
            Directory relative paths resolve against

        Returns
        -------
        PipelineConfig
            Constructed config object with stages parsed
        """
        config = cls(str(Path(base_dir) / "pipeline.yaml"))
        config.raw_config = config_dict
        config.global_settings = {
            "pipeline": config_dict.get("pipeline", {}),
            "global": config_dict.get("global", {}),
        }
        config.parse_stages()
        return config
