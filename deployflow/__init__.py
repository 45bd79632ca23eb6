"""deployflow: staged build/deploy/visualize pipeline runner.

This package runs a fixed sequence of named stages (environment setup,
database setup, ETL, reports, deployment, dashboard refresh) as external
commands, with:
- A global timeout and per-stage failure containment
- Post-run hooks for always/success/failure/unstable outcomes
- Artifact archiving with build retention
- Email notification of failed runs

Example usage:
    >>> from deployflow.pipeline import PipelineConfig, PipelineLogger, PipelineOrchestrator
    >>>
    >>> config = PipelineConfig("pipeline.yaml")
    >>> config.load()
    >>> config.parse_stages()
    >>> run = PipelineOrchestrator.from_config(config, PipelineLogger()).run()
"""

__version__ = "0.1.0"
