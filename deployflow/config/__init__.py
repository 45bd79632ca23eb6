"""Run-wide configuration values shared by every stage.

Example
-------
>>> from deployflow.config import EnvironmentContext
>>> context = EnvironmentContext.resolve(settings)
"""

from .environment import (
    REQUIRED_VARIABLES,
    ConfigurationError,
    EnvironmentContext,
)

__all__ = [
    "REQUIRED_VARIABLES",
    "ConfigurationError",
    "EnvironmentContext",
]
