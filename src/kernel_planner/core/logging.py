"""
Planner Logging

Structured logging for planning sessions with optional file output. Each
PlannerSession owns its logger; there is no process-wide instance.

Usage:
    from kernel_planner.core.logging import PlannerLogger, LogConfig

    log = PlannerLogger(output_dir=Path("logs/"), filename_prefix="plan_fwd_ic256")
    log.section("Model search")
    log.info("Evaluating 12 candidates...")
    log.debug("estimate calc_mean ...")     # file only unless verbose
    log.close()

    # Or as a context manager
    with PlannerLogger(output_dir, prefix) as log:
        log.success("Plan stored")
"""

import logging
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, TextIO


@dataclass
class LogConfig:
    """Configuration for planner logging."""

    # Output directory for log files
    output_dir: Optional[Path] = None

    # Prefix for log filename (e.g., "plan_fwd_f32_ic256")
    filename_prefix: Optional[str] = None

    # Log level for console output (logging.DEBUG shows model estimates)
    console_level: int = logging.INFO

    # Log level for file output
    file_level: int = logging.DEBUG

    # Whether to include timestamps in file output
    file_timestamps: bool = True

    # Width for section separators
    separator_width: int = 80


class PlannerLogger:
    """
    Structured logger for planning sessions.

    Provides:
    - Dual output to console and file
    - Level filtering per destination (debug goes to the file by default)
    - Section headers and simple tables
    - Thread-safe writes for concurrent candidate evaluation
    """

    def __init__(
        self,
        output_dir: Optional[Path] = None,
        filename_prefix: Optional[str] = None,
        config: Optional[LogConfig] = None,
        stream: Optional[TextIO] = None,
    ):
        """
        Initialize the planner logger.

        Args:
            output_dir: Directory to save log file. If None, logs to console only.
            filename_prefix: Prefix for log filename; the file is "{prefix}.log".
            config: Optional LogConfig for advanced configuration.
            stream: Console stream (default: sys.stdout at write time).
        """
        self.config = config or LogConfig()
        self.output_dir = Path(output_dir) if output_dir else self.config.output_dir
        self.filename_prefix = filename_prefix or self.config.filename_prefix
        self._stream = stream

        self._lock = threading.Lock()
        self._log_file: Optional[TextIO] = None
        self._log_path: Optional[Path] = None
        self._lines: List[str] = []

        if self.output_dir and self.filename_prefix:
            self._setup_file_logging()

    @classmethod
    def console(cls, verbose: bool = False, stream: Optional[TextIO] = None) -> 'PlannerLogger':
        level = logging.DEBUG if verbose else logging.INFO
        return cls(config=LogConfig(console_level=level), stream=stream)

    def _setup_file_logging(self):
        """Set up file logging."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._log_path = self.output_dir / f"{self.filename_prefix}.log"
        self._log_file = open(self._log_path, 'w')

    @property
    def log_path(self) -> Optional[Path]:
        """Get the path to the log file, if any."""
        return self._log_path

    @property
    def verbose(self) -> bool:
        return self.config.console_level <= logging.DEBUG

    def _write(self, message: str, level: int = logging.INFO):
        """Write a message to console and/or file, filtered by level."""
        with self._lock:
            if level >= self.config.console_level:
                stream = self._stream or sys.stdout
                stream.write(message + "\n")
                self._lines.append(message)

            if self._log_file and level >= self.config.file_level:
                timestamp = ""
                if self.config.file_timestamps:
                    timestamp = f"[{datetime.now().strftime('%H:%M:%S.%f')[:-3]}] "
                self._log_file.write(f"{timestamp}{message}\n")
                self._log_file.flush()

    def info(self, message: str):
        """Log an informational message."""
        self._write(message)

    def debug(self, message: str):
        """Log a debug message (file only unless verbose)."""
        self._write(message, level=logging.DEBUG)

    def warning(self, message: str):
        """Log a warning message."""
        self._write(f"⚠ WARNING: {message}", level=logging.WARNING)

    def error(self, message: str):
        """Log an error message."""
        self._write(f"✗ ERROR: {message}", level=logging.ERROR)

    def success(self, message: str):
        """Log a success message."""
        self._write(f"✓ {message}")

    def section(self, title: str, level: int = 1):
        """
        Print a section header.

        Args:
            title: Section title
            level: Header level (1=major, 2=minor)
        """
        width = self.config.separator_width
        if level == 1:
            self._write("")
            self._write("=" * width)
            self._write(title)
            self._write("=" * width)
        else:
            self._write("")
            self._write(title)
            self._write("-" * width)

    def table_header(self, *columns: str, widths: Optional[List[int]] = None):
        if widths is None:
            widths = [max(12, len(col) + 2) for col in columns]

        header = "  ".join(f"{col:<{w}}" for col, w in zip(columns, widths))
        self._write(header)
        self._write("-" * len(header))

    def table_row(self, *values, widths: Optional[List[int]] = None):
        if widths is None:
            widths = [max(12, len(str(v)) + 2) for v in values]

        row = "  ".join(f"{str(v):<{w}}" for v, w in zip(values, widths))
        self._write(row)

    def get_content(self) -> str:
        """Get all console-logged content as a string."""
        return "\n".join(self._lines)

    def close(self):
        """Close the log file."""
        with self._lock:
            if self._log_file:
                self._log_file.close()
                self._log_file = None

    def __enter__(self) -> 'PlannerLogger':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
