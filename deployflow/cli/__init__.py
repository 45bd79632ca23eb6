"""Command-line interface for deployflow.

Example Usage
-------------
    # From command line:
    deployflow --help
    deployflow plan --config pipeline.yaml
    deployflow run --config pipeline.yaml
    deployflow prune --config pipeline.yaml --keep 5
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
