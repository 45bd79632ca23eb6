"""Unit tests for the run environment context."""

import dataclasses

import pytest

from deployflow.config import ConfigurationError, EnvironmentContext


SETTINGS = {
    "db_host": "db.internal",
    "db_port": 5432,
    "db_name": "warehouse",
    "db_user": "etl",
    "db_password": "from-config",
    "notify_recipient": "team@example.com",
    "python": "/usr/bin/python3",
}


class TestEnvironmentContext:
    """Tests for EnvironmentContext."""

    def test_resolve_from_settings(self):
        """Test values come from settings when the environment is empty."""
        context = EnvironmentContext.resolve(SETTINGS, environ={}, job_name="etl", build_number=4)
        assert context.db_host == "db.internal"
        assert context.db_port == "5432"
        assert context.build_number == 4

    def test_environment_overrides_settings(self):
        """Test environment variables win over configured values."""
        context = EnvironmentContext.resolve(
            SETTINGS, environ={"DB_PASSWORD": "from-env", "DB_HOST": ""}
        )
        assert context.db_password == "from-env"
        assert context.db_host == "db.internal"

    def test_missing_values_reported_together(self):
        """Test every unresolved value is named in one error."""
        settings = dict(SETTINGS)
        del settings["db_host"]
        del settings["python"]
        with pytest.raises(ConfigurationError) as excinfo:
            EnvironmentContext.resolve(settings, environ={})
        message = str(excinfo.value)
        assert "db_host (DB_HOST)" in message
        assert "python (PYTHON)" in message

    def test_as_env(self, environ):
        """Test exported variables include run metadata and extras."""
        context = EnvironmentContext.resolve(
            {"data_dir": "data"},
            environ=environ,
            job_name="etl",
            build_number=9,
            build_url="http://ci/etl/9/",
            workspace="/srv/etl",
        )
        env = context.as_env()
        assert env["DB_NAME"] == "warehouse"
        assert env["NOTIFY_EMAIL"] == "team@example.com"
        assert env["BUILD_NUMBER"] == "9"
        assert env["JOB_NAME"] == "etl"
        assert env["WORKSPACE"] == "/srv/etl"
        assert env["BUILD_URL"] == "http://ci/etl/9/"
        assert env["DATA_DIR"] == "data"

    def test_describe_masks_password(self, environ):
        """Test the loggable view hides the password."""
        context = EnvironmentContext.resolve(environ=environ)
        assert context.describe()["DB_PASSWORD"] == "****"
        assert context.as_env()["DB_PASSWORD"] == "s3cret"

    def test_context_is_immutable(self, environ):
        """Test the context cannot be modified after resolution."""
        context = EnvironmentContext.resolve(environ=environ)
        with pytest.raises(dataclasses.FrozenInstanceError):
            context.db_host = "elsewhere"
        with pytest.raises(TypeError):
            context.extra["NEW"] = "value"
