"""
Structured logging system for jobmatcher.

Provides centralized logging with console and file outputs, plus metrics
tracking for monitoring provider health during match runs.
"""

import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring match execution.
    """

    def __init__(
        self,
        name: str = "jobmatcher",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()

        self.metrics = self._empty_metrics()

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"jobmatcher_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    @staticmethod
    def _empty_metrics() -> dict:
        return {
            "provider_calls": 0,
            "matches_attempted": 0,
            "matches_succeeded": 0,
            "matches_failed": 0,
            "retries": 0,
            "circuit_opens": 0,
            "errors_by_type": {},
            "strategy_usage": {},
        }

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_provider_call(self):
        """Increment provider call counter."""
        self.metrics["provider_calls"] += 1

    def record_strategy(self, strategy: str):
        """Record which execution strategy a run used."""
        usage = self.metrics["strategy_usage"]
        usage[strategy] = usage.get(strategy, 0) + 1

    def record_match_attempt(self):
        self.metrics["matches_attempted"] += 1

    def record_match_success(self):
        self.metrics["matches_succeeded"] += 1

    def record_match_failure(self, error_type: str):
        """Record a failed job match under its error type."""
        self.metrics["matches_failed"] += 1

        if error_type not in self.metrics["errors_by_type"]:
            self.metrics["errors_by_type"][error_type] = 0
        self.metrics["errors_by_type"][error_type] += 1

    def record_retry(self):
        self.metrics["retries"] += 1

    def record_circuit_open(self):
        self.metrics["circuit_opens"] += 1

    def get_metrics(self) -> dict:
        """Return current metrics, including the overall success rate."""
        metrics_copy = dict(self.metrics)
        metrics_copy["errors_by_type"] = dict(self.metrics["errors_by_type"])
        metrics_copy["strategy_usage"] = dict(self.metrics["strategy_usage"])

        attempted = metrics_copy["matches_attempted"]
        metrics_copy["success_rate"] = (
            round(metrics_copy["matches_succeeded"] / attempted, 3) if attempted > 0 else 0.0
        )
        return metrics_copy

    def reset_metrics(self):
        self.metrics = self._empty_metrics()

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        attempted = metrics["matches_attempted"]
        succeeded = metrics["matches_succeeded"]
        overall_rate = round(metrics["success_rate"] * 100, 1)

        self.info("=== Match Run Metrics ===")
        self.info(f"Provider Calls: {metrics['provider_calls']} (retries: {metrics['retries']})")
        self.info(f"Matches: {succeeded}/{attempted} ({overall_rate}% success)")
        self.info(f"Circuit Opens: {metrics['circuit_opens']}")

        if metrics["strategy_usage"]:
            self.info("Strategies:")
            for strategy, count in metrics["strategy_usage"].items():
                self.info(f"  {strategy}: {count}")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "jobmatcher",
    level: Optional[str] = None,
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Level, log directory and file output default to the JOBMATCHER_LOG_LEVEL,
    JOBMATCHER_LOG_DIR and JOBMATCHER_LOG_TO_FILE environment variables.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        if level is None:
            level = os.getenv("JOBMATCHER_LOG_LEVEL", "INFO")
        if "log_dir" not in kwargs and os.getenv("JOBMATCHER_LOG_DIR"):
            kwargs["log_dir"] = Path(os.environ["JOBMATCHER_LOG_DIR"])
        if "enable_file" not in kwargs:
            kwargs["enable_file"] = os.getenv("JOBMATCHER_LOG_TO_FILE", "true").lower() == "true"
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
