"""I/O utilities for deployflow.

Provides artifact archiving and retention, structured log records, and
run summary exports.
"""

from .logging import log_json, write_text_record
from .artifacts import (
    ArtifactArchiver,
    ArtifactSet,
    build_dir_name,
    list_build_dirs,
    prune_build_dirs,
)
from .report import MetricsRecorder, export_run_summary, stage_results_frame

__all__ = [
    # Logging
    "log_json",
    "write_text_record",
    # Artifacts
    "ArtifactArchiver",
    "ArtifactSet",
    "build_dir_name",
    "list_build_dirs",
    "prune_build_dirs",
    # Reports
    "MetricsRecorder",
    "export_run_summary",
    "stage_results_frame",
]
