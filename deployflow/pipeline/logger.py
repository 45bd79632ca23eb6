"""Structured logging for pipeline runs."""

import logging
import sys
from pathlib import Path
from typing import Optional


class ColoredFormatter(logging.Formatter):
    """Custom formatter with color support for console output."""

    def __init__(self, fmt: str, datefmt: str, colors: dict):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = colors

    def format(self, record):
        levelname = record.levelname
        color = self.colors.get(levelname, self.colors["RESET"])
        reset = self.colors["RESET"]
        record.levelname = f"{color}{levelname}{reset}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class PipelineLogger:
    """Console and file logging for pipeline runs.

    The console handler is coloured and concise. Once a build number is
    known, ``attach_run_log`` adds a plain file handler writing the run's
    ``console.log``, which is what failure notifications point at.
    Module loggers under the ``deployflow`` namespace propagate here.

    Parameters
    ----------
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_name : str, optional
        Logger name. Default: "deployflow"

    Example
    -------
    >>> logger = PipelineLogger(log_level="INFO")
    >>> logger.setup()
    >>> logger.log_stage_start("etl", "Run ETL")
    >>> logger.log_stage_complete("etl", 45.2)
    """

    COLORS = {
        "DEBUG": "\033[0;36m",  # Cyan
        "INFO": "\033[0;34m",  # Blue
        "WARNING": "\033[1;33m",  # Yellow
        "ERROR": "\033[0;31m",  # Red
        "CRITICAL": "\033[1;31m",  # Bold Red
        "SUCCESS": "\033[0;32m",  # Green
        "RESET": "\033[0m",  # Reset
    }

    def __init__(self, log_level: str = "INFO", log_name: str = "deployflow"):
        self.log_level = getattr(logging, log_level.upper())
        self.logger = logging.getLogger(log_name)
        self.logger.setLevel(self.log_level)
        self.logger.handlers = []
        self.log_file: Optional[Path] = None
        self._file_handler: Optional[logging.Handler] = None

    def setup(self, console: bool = True) -> None:
        """Configure the console handler."""
        if not console:
            return
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(self._get_console_formatter())
        self.logger.addHandler(console_handler)

    def attach_run_log(self, log_file: Path) -> Path:
        """Start copying all pipeline output into ``log_file``."""
        self.detach_run_log()
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        handler.setLevel(self.log_level)
        handler.setFormatter(self._get_file_formatter())
        self.logger.addHandler(handler)
        self._file_handler = handler
        self.log_file = log_file
        return log_file

    def detach_run_log(self) -> None:
        if self._file_handler is not None:
            self.logger.removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None

    def _get_file_formatter(self) -> logging.Formatter:
        """Get formatter for file logging (detailed, no colors)."""
        return logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def _get_console_formatter(self) -> logging.Formatter:
        """Get formatter for console logging (colored, concise)."""
        return ColoredFormatter(
            fmt="%(asctime)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
            colors=self.COLORS,
        )

    def log_stage_start(self, stage_id: str, stage_name: str) -> None:
        """Log the start of a pipeline stage."""
        separator = "=" * 80
        self.logger.info(separator)
        self.logger.info(f"Starting Stage {stage_id}: {stage_name}")
        self.logger.info(separator)

    def log_stage_complete(self, stage_id: str, duration: float) -> None:
        """Log successful completion of a stage.

        Parameters
        ----------
        stage_id : str
            Stage identifier
        duration : float
            Execution time in seconds
        """
        duration_str = self.format_duration(duration)
        self.logger.info(f"[PASS] Stage {stage_id} completed successfully in {duration_str}")

    def log_stage_warning(self, stage_id: str, warning: str) -> None:
        """Log a tolerated (non-fatal) stage failure."""
        self.logger.warning(f"[WARN] Stage {stage_id} unstable: {warning}")

    def log_stage_error(self, stage_id: str, error: str) -> None:
        """Log a stage error.

        Parameters
        ----------
        stage_id : str
            Stage identifier
        error : str
            Error message or exception
        """
        self.logger.error(f"[FAIL] Stage {stage_id} failed: {error}")

    def log_stage_skipped(self, stage_id: str, reason: str) -> None:
        self.logger.info(f"[SKIP] Stage {stage_id}: {reason}")

    def log_run_status(self, build_number: int, status: str, duration: float) -> None:
        """Log the terminal status of a run with a matching marker."""
        duration_str = self.format_duration(duration)
        message = f"Build #{build_number} finished: {status} in {duration_str}"
        if status == "SUCCESS":
            self.logger.info(f"[PASS] {message}")
        elif status == "UNSTABLE":
            self.logger.warning(f"[WARN] {message}")
        else:
            self.logger.error(f"[FAIL] {message}")

    def log_info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def log_warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def log_error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def log_debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format duration in seconds to human-readable string.

        Parameters
        ----------
        seconds : float
            Duration in seconds

        Returns
        -------
        str
            Formatted string (e.g., "45.2s", "1m 23s", "2h 15m")
        """
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            mins = int(seconds // 60)
            secs = int(seconds % 60)
            return f"{mins}m {secs}s"
        else:
            hours = int(seconds // 3600)
            mins = int((seconds % 3600) // 60)
            return f"{hours}h {mins}m"
