"""Run summaries and deployment metrics records."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional, Union

import pandas as pd
import yaml

from .logging import write_text_record

if TYPE_CHECKING:
    from ..pipeline.process import ProcessRunner
    from ..pipeline.run import Run

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

STAGE_COLUMNS = [
    "stage_id",
    "stage_name",
    "status",
    "duration",
    "failure_kind",
    "error",
    "log_ref",
]


def stage_results_frame(run: "Run") -> pd.DataFrame:
    """Tabulate a run's stage results, one row per stage that ran."""
    rows = [result.to_dict() for result in run.results]
    df = pd.DataFrame(rows, columns=STAGE_COLUMNS + ["steps"])
    df.insert(0, "build_number", run.build_number)
    return df


def export_run_summary(run: "Run", out_dir: PathLike) -> Dict[str, Path]:
    """Write ``stage_results.csv`` and ``run.yaml`` for a finished run.

    Parameters
    ----------
    run : Run
        Run in a terminal state
    out_dir : PathLike
        Destination directory, created if missing

    Returns
    -------
    Dict[str, Path]
        Mapping of output kind to written path
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    csv_path = out_dir / "stage_results.csv"
    stage_results_frame(run).to_csv(csv_path, index=False)

    yaml_path = out_dir / "run.yaml"
    with open(yaml_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(run.to_dict(), f, sort_keys=False)

    return {"stage_results": csv_path, "run": yaml_path}


def _parse_count(text: str) -> Optional[int]:
    """Take the last line of command output that starts with an integer.

    Trailers such as psql's ``(1 row)`` and comment lines are passed over.
    """
    for line in reversed(text.splitlines()):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            return int(line.split()[0])
        except ValueError:
            continue
    return None


class MetricsRecorder:
    """Writes the plain-text deployment metrics record.

    Parameters
    ----------
    path : PathLike
        File receiving the record (overwritten every deployment)
    count_command : str, optional
        Command printing the data store record count on stdout
        (e.g. a ``psql -tAc "SELECT COUNT(*) ..."`` invocation)
    count_timeout : float
        Seconds allowed for the count command
    """

    def __init__(
        self,
        path: PathLike,
        count_command: Optional[str] = None,
        count_timeout: float = 60.0,
    ):
        self.path = Path(path)
        self.count_command = count_command
        self.count_timeout = count_timeout

    def count_records(self, runner: "ProcessRunner") -> Optional[int]:
        if not self.count_command:
            return None
        result = runner.run(
            self.count_command, timeout=self.count_timeout, log_name="metrics.count"
        )
        if not result.ok:
            logger.warning(f"Record count command failed: {result.error}")
            return None
        with open(result.stdout_log, "r", encoding="utf-8", errors="replace") as f:
            count = _parse_count(f.read())
        if count is None:
            logger.warning("Record count command printed no integer")
        return count

    def record(
        self, run: "Run", status: str, runner: "ProcessRunner"
    ) -> Path:
        """Write build number, elapsed seconds, record count, status, timestamp."""
        count = self.count_records(runner)
        record = {
            "build_number": run.build_number,
            "elapsed_seconds": round(run.elapsed_seconds, 1),
            "record_count": count if count is not None else "unknown",
            "status": status,
            "timestamp": datetime.now().isoformat(timespec="seconds"),
        }
        path = write_text_record(self.path, record)
        logger.info(f"Metrics record written to {path}")
        return path
