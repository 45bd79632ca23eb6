"""Pytest configuration and shared fixtures for deployflow tests."""

import sys
from pathlib import Path

import pytest
import yaml

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from deployflow.pipeline import PipelineConfig, PipelineLogger


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def environ() -> dict:
    """Complete set of required environment variables."""
    return {
        "DB_HOST": "localhost",
        "DB_PORT": "5432",
        "DB_NAME": "warehouse",
        "DB_USER": "etl",
        "DB_PASSWORD": "s3cret",
        "NOTIFY_EMAIL": "team@example.com",
        "PYTHON": sys.executable,
    }


@pytest.fixture
def pipeline_logger() -> PipelineLogger:
    """Pipeline logger with console output."""
    logger = PipelineLogger(log_level="DEBUG")
    logger.setup()
    yield logger
    logger.detach_run_log()


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def three_stage_dict() -> dict:
    """Configuration dictionary with three single-step stages."""
    return {
        "pipeline": {"name": "etl-dashboard", "timeout_minutes": 5},
        "stages": {
            "setup": {"name": "Setup", "steps": [{"name": "install", "command": "true"}]},
            "etl": {"name": "ETL", "steps": [{"name": "load", "command": "true"}]},
            "dashboard": {
                "name": "Dashboard",
                "steps": [{"name": "refresh", "command": "true"}],
            },
        },
    }


@pytest.fixture
def make_config(tmp_path):
    """Factory building a PipelineConfig rooted at tmp_path."""

    def _make(config_dict: dict) -> PipelineConfig:
        return PipelineConfig.from_dict(config_dict, base_dir=str(tmp_path))

    return _make


@pytest.fixture
def sample_pipeline_config(tmp_path) -> Path:
    """Create sample pipeline configuration file with real commands."""
    python = sys.executable
    config = {
        "pipeline": {
            "name": "Test Pipeline",
            "timeout_minutes": 1,
            "keep_builds": 3,
        },
        "global": {
            "python": python,
        },
        "environment": {
            "db_host": "localhost",
            "db_port": 5432,
            "db_name": "warehouse",
            "db_user": "etl",
            "db_password": "pw",
            "notify_recipient": "team@example.com",
            "python": "{global.python}",
        },
        "notifications": {
            "smtp_host": "127.0.0.1",
            "smtp_port": 1,
            "from_address": "ci@example.com",
            "timeout": 1,
        },
        "stages": {
            "prepare": {
                "name": "Prepare",
                "steps": [
                    {
                        "name": "mkdir",
                        "command": [python, "-c", "import os; os.makedirs('reports', exist_ok=True)"],
                    }
                ],
            },
            "report": {
                "name": "Report",
                "steps": [
                    {
                        "name": "write",
                        "command": [python, "-c", "open('reports/out.txt', 'w').write('ok')"],
                    }
                ],
                "artifacts": ["reports/*.txt"],
            },
        },
    }

    path = tmp_path / "pipeline.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path
