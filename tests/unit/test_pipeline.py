"""Unit tests for pipeline definitions, configuration and logging."""

import pytest
import yaml
from pathlib import Path

from deployflow.pipeline import (
    PipelineConfig,
    PipelineLogger,
    ServiceSpec,
    Stage,
    Step,
)


class TestStage:
    """Tests for Stage and Step dataclasses."""

    def test_create_stage(self):
        """Test creating a basic stage."""
        stage = Stage(
            name="Test Stage",
            stage_id="test",
            steps=[Step(name="run", command="echo hi")],
        )
        assert stage.name == "Test Stage"
        assert stage.stage_id == "test"
        assert stage.non_fatal is False
        assert stage.artifacts == []
        assert stage.service is None

    def test_step_from_string(self):
        """Test a bare string becomes a named step."""
        step = Step.from_dict("make build", 1)
        assert step.name == "step2"
        assert step.command == "make build"
        assert step.allow_failure is False

    def test_step_from_dict(self):
        """Test step options are parsed."""
        step = Step.from_dict(
            {"name": "lint", "command": ["flake8", "."], "timeout": 30, "allow_failure": True},
            0,
        )
        assert step.name == "lint"
        assert step.timeout == 30.0
        assert step.allow_failure is True
        assert step.display_command() == "flake8 ."

    def test_step_missing_command(self):
        """Test a step without command is rejected."""
        with pytest.raises(KeyError, match="command"):
            Step.from_dict({"name": "broken"}, 0)

    def test_validate_no_steps(self):
        """Test a stage without steps is invalid."""
        valid, errors = Stage(name="Empty", stage_id="empty").validate()
        assert not valid
        assert "no steps" in errors[0]

    def test_validate_duplicate_step_names(self):
        """Test duplicate step names are reported."""
        stage = Stage(
            name="Dup",
            stage_id="dup",
            steps=[Step("a", "true"), Step("a", "false")],
        )
        valid, errors = stage.validate()
        assert not valid
        assert any("duplicate" in e for e in errors)

    def test_service_only_stage_is_valid(self):
        """Test a stage may consist of a service alone."""
        stage = Stage(
            name="Dash",
            stage_id="dash",
            service=ServiceSpec(command="serve", pattern="serve"),
        )
        valid, _ = stage.validate()
        assert valid

    def test_from_dict(self):
        """Test creating stage from dictionary."""
        data = {
            "name": "Dashboard",
            "non_fatal": True,
            "steps": ["build"],
            "service": {"command": "serve", "pattern": "app.py", "attempts": 5},
        }
        stage = Stage.from_dict(data, "dashboard")
        assert stage.stage_id == "dashboard"
        assert stage.non_fatal is True
        assert stage.service.pattern == "app.py"
        assert stage.service.attempts == 5
        assert stage.service.grace_seconds == 5.0


class TestPipelineConfig:
    """Tests for PipelineConfig class."""

    @pytest.fixture
    def sample_config_file(self, tmp_path) -> Path:
        """Create sample pipeline config file."""
        config = {
            "pipeline": {"name": "Test Pipeline", "timeout_minutes": 2},
            "global": {"python": "/usr/bin/python3", "data_dir": "data"},
            "environment": {"python": "{global.python}"},
            "post": {"success": ["echo {pipeline.name}"]},
            "stages": {
                "B": {
                    "name": "Stage B",
                    "steps": [{"name": "run", "command": "{global.python} b.py"}],
                    "artifacts": ["{global.data_dir}/**"],
                },
                "A": {
                    "name": "Stage A",
                    "non_fatal": True,
                    "steps": ["echo ${HOME} {unknown.ref}"],
                },
            },
        }
        path = tmp_path / "pipeline.yaml"
        with open(path, "w") as f:
            yaml.dump(config, f, sort_keys=False)
        return path

    @pytest.fixture
    def loaded(self, sample_config_file) -> PipelineConfig:
        config = PipelineConfig(str(sample_config_file))
        config.load()
        config.parse_stages()
        return config

    def test_init(self, tmp_path):
        """Test config initialization."""
        config = PipelineConfig(str(tmp_path / "config.yaml"))
        assert config.stages == {}

    def test_load_missing_file(self, tmp_path):
        """Test loading a missing file fails."""
        config = PipelineConfig(str(tmp_path / "missing.yaml"))
        with pytest.raises(FileNotFoundError):
            config.load()

    def test_load(self, sample_config_file):
        """Test loading config from YAML."""
        config = PipelineConfig(str(sample_config_file))
        config.load()
        assert config.global_settings["pipeline"]["name"] == "Test Pipeline"

    def test_parse_stages_keeps_declaration_order(self, loaded):
        """Test stages run in the order they are declared."""
        assert loaded.get_execution_order() == ["B", "A"]
        assert loaded.stages["A"].non_fatal is True

    def test_resolve_templates(self, loaded):
        """Test template resolution in commands and artifacts."""
        assert loaded.stages["B"].steps[0].command == "/usr/bin/python3 b.py"
        assert loaded.stages["B"].artifacts == ["data/**"]
        assert loaded.environment["python"] == "/usr/bin/python3"
        assert loaded.post_commands == {"success": ["echo Test Pipeline"]}

    def test_unknown_templates_untouched(self, loaded):
        """Test shell variables and unknown references survive."""
        assert loaded.stages["A"].steps[0].command == "echo ${HOME} {unknown.ref}"

    def test_missing_stages_section(self, tmp_path):
        """Test a config without stages is rejected."""
        path = tmp_path / "config.yaml"
        path.write_text("pipeline:\n  name: x\n")
        config = PipelineConfig(str(path))
        config.load()
        with pytest.raises(KeyError, match="stages"):
            config.parse_stages()

    def test_stage_without_steps(self, tmp_path):
        """Test a stage without steps or service is rejected."""
        with pytest.raises(KeyError, match="steps"):
            PipelineConfig.from_dict({"stages": {"A": {"name": "A"}}}, str(tmp_path))

    def test_settings_defaults(self, tmp_path):
        """Test default settings."""
        config = PipelineConfig.from_dict(
            {"stages": {"A": {"steps": ["true"]}}}, str(tmp_path)
        )
        assert config.job_name == "pipeline"
        assert config.timeout_seconds == 30 * 60
        assert config.keep_builds == 10
        assert config.workspace == tmp_path
        assert config.logs_dir == tmp_path / "logs"
        assert config.artifacts_dir == tmp_path / "artifacts"
        assert "reports/**" in config.sweep_patterns
        assert config.metrics["path"] == "reports/deployment_metrics.txt"

    def test_timeout(self, loaded):
        """Test timeout_minutes is converted to seconds."""
        assert loaded.timeout_seconds == 120

    def test_build_url(self, tmp_path):
        """Test build URL rendering."""
        config = PipelineConfig.from_dict(
            {
                "pipeline": {
                    "name": "etl",
                    "build_url": "http://ci/job/{job_name}/{build_number}/",
                },
                "stages": {"A": {"steps": ["true"]}},
            },
            str(tmp_path),
        )
        assert config.build_url(7) == "http://ci/job/etl/7/"

    def test_validate_valid(self, loaded):
        """Test validation of a good config."""
        valid, errors = loaded.validate()
        assert valid
        assert errors == []

    def test_validate_unknown_hook_set(self, tmp_path):
        """Test unknown post hook sets are reported."""
        config = PipelineConfig.from_dict(
            {"post": {"sometimes": ["echo"]}, "stages": {"A": {"steps": ["true"]}}},
            str(tmp_path),
        )
        valid, errors = config.validate()
        assert not valid
        assert any("sometimes" in e for e in errors)


class TestPipelineLogger:
    """Tests for PipelineLogger class."""

    def test_setup(self):
        """Test logger setup."""
        logger = PipelineLogger()
        logger.setup()
        assert len(logger.logger.handlers) == 1

    def test_attach_run_log(self, tmp_path):
        """Test the run log file receives messages."""
        logger = PipelineLogger()
        logger.setup()
        log_file = logger.attach_run_log(tmp_path / "build_1" / "console.log")
        logger.log_stage_error("etl", "Exit code 2")
        logger.detach_run_log()

        content = log_file.read_text()
        assert "[FAIL] Stage etl failed: Exit code 2" in content
        assert len(logger.logger.handlers) == 1

    def test_markers(self, caplog):
        """Test stage events carry status markers."""
        logger = PipelineLogger()
        with caplog.at_level("INFO", logger="deployflow"):
            logger.log_stage_complete("A", 1.0)
            logger.log_stage_warning("B", "tolerated")
            logger.log_stage_skipped("C", "stage B failed")
        assert "[PASS]" in caplog.text
        assert "[WARN]" in caplog.text
        assert "[SKIP]" in caplog.text

    def test_format_duration_seconds(self):
        """Test duration formatting for seconds."""
        assert PipelineLogger.format_duration(45.2) == "45.2s"

    def test_format_duration_minutes(self):
        """Test duration formatting for minutes."""
        assert PipelineLogger.format_duration(125) == "2m 5s"

    def test_format_duration_hours(self):
        """Test duration formatting for hours."""
        result = PipelineLogger.format_duration(7300)
        assert "h" in result
        assert "m" in result
