"""
Centralized logging for RevEnGo.

Every module calls ``get_logger(__name__)``. Loggers write INFO and above to
stdout, everything to a daily log file and errors to a daily error file under
``LOG_DIR`` (default ``logs/``).
"""

import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

DETAILED_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'
CONSOLE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'


def _daily_file_handler(log_dir: Path, prefix: str, level: int) -> logging.FileHandler:
    handler = logging.FileHandler(log_dir / f"{prefix}_{datetime.now().strftime('%Y%m%d')}.log")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=DETAILED_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    return handler


class RevEnGoLogger:
    """Logger factory plus helpers for the recurring analysis log lines."""

    _loggers: Dict[str, logging.Logger] = {}

    @staticmethod
    def get_logger(name: str, log_level: Optional[str] = None) -> logging.Logger:
        """
        Get or create a configured logger.

        Args:
            name: Logger name (usually the module name)
            log_level: DEBUG/INFO/WARNING/ERROR/CRITICAL; defaults to the
                LOG_LEVEL environment variable, then INFO
        """
        cached = RevEnGoLogger._loggers.get(name)
        if cached is not None:
            return cached

        level_name = (log_level or os.getenv('LOG_LEVEL', 'INFO')).upper()
        logger = logging.getLogger(name)
        logger.setLevel(getattr(logging, level_name, logging.INFO))

        if not logger.handlers:
            console = logging.StreamHandler(sys.stdout)
            console.setLevel(logging.INFO)
            console.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT, datefmt='%H:%M:%S'))
            logger.addHandler(console)

            log_dir = Path(os.getenv('LOG_DIR', 'logs'))
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.addHandler(_daily_file_handler(log_dir, 'revengo', logging.DEBUG))
            logger.addHandler(_daily_file_handler(log_dir, 'revengo_errors', logging.ERROR))

        RevEnGoLogger._loggers[name] = logger
        return logger

    @staticmethod
    def log_analysis_start(logger: logging.Logger, path: str, options: dict):
        logger.info(f"🔍 Starting analysis for: {path}")
        logger.debug(f"Analysis options: {json.dumps(options, indent=2, default=str)}")

    @staticmethod
    def log_analysis_complete(
        logger: logging.Logger,
        path: str,
        duration: float,
        findings: int,
        vulnerabilities: int,
        failed_tasks: int
    ):
        logger.info(
            f"✅ Analysis complete for: {path} | Duration: {duration:.2f}s | "
            f"Findings: {findings} | Vulnerabilities: {vulnerabilities} | "
            f"Failed tasks: {failed_tasks}"
        )

    @staticmethod
    def log_task_failure(logger: logging.Logger, task: str, error: Exception):
        """One line per failed analysis task; the analysis itself carries on."""
        logger.warning(f"⚠️ Task '{task}' failed ({type(error).__name__}): {error}")

    @staticmethod
    def log_model_call(logger: logging.Logger, model: str, tokens_in: int, tokens_out: int, cost: float):
        logger.debug(f"Model: {model} | Tokens: {tokens_in} in, {tokens_out} out | Cost: ${cost:.6f}")

    @staticmethod
    def log_error(logger: logging.Logger, error: Exception, context: Optional[dict] = None):
        """Log an unexpected error with its traceback and optional context."""
        logger.error(f"❌ Error: {error}", exc_info=True)
        if context:
            logger.error(f"Context: {json.dumps(context, indent=2, default=str)}")


def get_logger(name: str, log_level: Optional[str] = None) -> logging.Logger:
    """Shortcut for ``RevEnGoLogger.get_logger``."""
    return RevEnGoLogger.get_logger(name, log_level)
