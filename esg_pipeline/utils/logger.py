"""
Logging infrastructure for the extraction pipeline.

Provides:
- Structured logging with millisecond timestamps and aligned levels
- Console and optional file output
- key=value suffixes for structured fields
- Error/warning tracking for end-of-run summaries
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(filename)s:%(lineno)d | %(message)s"
PHASE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | {phase} | %(filename)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S,%f"

# Third-party loggers routed through the unified format
EXTERNAL_LOGGERS = ["LiteLLM", "httpx", "httpcore", "anthropic", "trafilatura", "readability"]


class MillisecondsFormatter(logging.Formatter):
    """Custom formatter that includes milliseconds and aligns log levels."""

    def formatTime(self, record, datefmt=None):  # noqa: N802 - must match parent class method name
        """Override formatTime to include milliseconds."""
        ct = datetime.fromtimestamp(record.created)
        if datefmt and "%f" in datefmt:
            s = ct.strftime(datefmt.replace(",%f", ""))
            return s + f",{int(record.msecs):03d}"
        elif datefmt:
            return ct.strftime(datefmt)
        else:
            return ct.strftime("%Y-%m-%d %H:%M:%S") + f",{int(record.msecs):03d}"


def _format_fields(message: str, fields: dict) -> str:
    if not fields:
        return message
    formatted_data = " ".join(f"{k}={v}" for k, v in fields.items())
    return f"{message} [{formatted_data}]"


class PipelineLogger:
    """
    Centralized logger for the pipeline with structured output.
    """

    def __init__(
        self,
        name: str = "esg_pipeline",
        log_level: str = "INFO",
        log_file: Optional[str] = None,
        log_dir: Optional[Path] = None,
        phase: Optional[str] = None,
    ):
        """
        Initialize the pipeline logger.

        Args:
            name: Logger name
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file name
            log_dir: Directory for log files (defaults to ./logs)
            phase: Optional phase label (e.g., "direct", "batch", "monitor")
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, log_level.upper()))
        self.phase = phase

        # Avoid duplicate lines through the root handler
        self.logger.propagate = False
        if self.logger.handlers:
            self.logger.handlers.clear()

        fmt_str = PHASE_LOG_FORMAT.format(phase=phase) if phase else LOG_FORMAT
        formatter = MillisecondsFormatter(fmt_str, datefmt=DATE_FORMAT)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, log_level.upper()))
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

        if log_file:
            log_dir = log_dir or Path.cwd() / "logs"
            log_dir.mkdir(parents=True, exist_ok=True)
            log_path = log_dir / log_file

            file_handler = logging.FileHandler(log_path)
            file_handler.setLevel(logging.DEBUG)  # Log everything to file
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

            self.info(f"Logging to file: {log_path}")

        self._configure_external_loggers(log_level, formatter)

        self.errors = []
        self.warnings = []

    def _configure_external_loggers(self, log_level: str, formatter: logging.Formatter):
        """
        Route root and third-party library loggers through the unified format.

        Library loggers stay at WARNING; module loggers inside esg_pipeline
        follow log_level through the root handler.
        """
        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level.upper()))
        root_logger.handlers.clear()

        root_handler = logging.StreamHandler(sys.stdout)
        root_handler.setLevel(getattr(logging, log_level.upper()))
        root_handler.setFormatter(formatter)
        root_logger.addHandler(root_handler)

        for lib_name in EXTERNAL_LOGGERS:
            lib_logger = logging.getLogger(lib_name)
            lib_logger.handlers.clear()
            lib_logger.propagate = True
            lib_logger.setLevel(logging.WARNING)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional structured data."""
        self.logger.debug(_format_fields(message, kwargs), stacklevel=2)

    def info(self, message: str, **kwargs):
        """Log info message with optional structured data."""
        self.logger.info(_format_fields(message, kwargs), stacklevel=2)

    def warning(self, message: str, **kwargs):
        """Log warning message and track for reporting."""
        message = _format_fields(message, kwargs)
        self.logger.warning(message, stacklevel=2)
        self.warnings.append(
            {
                "message": message,
                "timestamp": datetime.now().isoformat(),
                "data": kwargs,
            }
        )

    def error(self, message: str, exception: Optional[Exception] = None, exc_info=None, **kwargs):
        """Log error message and track for reporting."""
        if exception:
            message = f"{message} | Exception: {str(exception)}"
        message = _format_fields(message, kwargs)

        self.logger.error(message, exc_info=exc_info or exception, stacklevel=2)
        self.errors.append(
            {
                "message": message,
                "exception": str(exception) if exception else None,
                "timestamp": datetime.now().isoformat(),
                "data": kwargs,
            }
        )

    def log_pipeline_start(self, num_records: int, mode: str):
        """Log start of pipeline run."""
        self.info("=" * 60)
        self.info(f"Pipeline started - processing {num_records} records", mode=mode)
        self.info("=" * 60)

    def log_pipeline_complete(self, counts: dict, duration_seconds: float, total_cost_usd: float):
        """Log completion of pipeline run."""
        self.info("=" * 60)
        self.info(
            "Pipeline completed",
            **counts,
            duration_seconds=round(duration_seconds, 2),
            total_cost_usd=round(total_cost_usd, 4),
            errors_logged=len(self.errors),
            warnings_logged=len(self.warnings),
        )
        self.info("=" * 60)
