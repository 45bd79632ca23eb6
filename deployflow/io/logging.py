"""Structured log output helpers (JSON lines and plain-text records)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Union

PathLike = Union[str, Path]


def _prepare_log_destination(log_path: PathLike) -> Path:
    """Ensure log destination directory exists."""
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def log_json(log_path: PathLike, record: dict[str, Any]) -> None:
    """Append a JSON line to log_path.

    Parameters
    ----------
    log_path : PathLike
        Path to log file.
    record : dict
        Dictionary to serialize as JSON.
    """
    path = _prepare_log_destination(log_path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, default=str))
        handle.write("\n")


def write_text_record(log_path: PathLike, record: Mapping[str, Any]) -> Path:
    """Write ``key: value`` lines, replacing any previous record."""
    path = _prepare_log_destination(log_path)
    lines = [f"{key}: {value}" for key, value in record.items()]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path
