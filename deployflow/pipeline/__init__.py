"""Pipeline orchestration module.

Provides YAML-based configuration, sequential stage execution with
per-stage failure containment, a global timeout, and post-run hooks.

Example Usage
-------------
>>> from deployflow.pipeline import (
...     PipelineConfig,
...     PipelineLogger,
...     PipelineOrchestrator,
... )
>>> # Load configuration
>>> config = PipelineConfig("pipeline.yaml")
>>> config.load()
>>> config.parse_stages()
>>> # Setup logging
>>> logger = PipelineLogger()
>>> logger.setup()
>>> # Execute pipeline
>>> orchestrator = PipelineOrchestrator.from_config(config, logger)
>>> run = orchestrator.run()
"""

# Stage representation
from .stage import ServiceSpec, Stage, StageStatus, Step

# Process execution
from .process import ExecutionResult, FailureKind, ProcessRunner

# Run records
from .run import Run, RunStateError, RunStatus, StageResult

# Configuration
from .config import PipelineConfig

# Logging
from .logger import (
    ColoredFormatter,
    PipelineLogger,
)

# Execution
from .hooks import CommandHook, PostActionDispatcher
from .stage_runner import StageRunner
from .executor import PipelineOrchestrator

__all__ = [
    # Stage
    "ServiceSpec",
    "Stage",
    "StageStatus",
    "Step",
    # Process
    "ExecutionResult",
    "FailureKind",
    "ProcessRunner",
    # Run
    "Run",
    "RunStateError",
    "RunStatus",
    "StageResult",
    # Config
    "PipelineConfig",
    # Logging
    "ColoredFormatter",
    "PipelineLogger",
    # Execution
    "CommandHook",
    "PostActionDispatcher",
    "StageRunner",
    "PipelineOrchestrator",
]
