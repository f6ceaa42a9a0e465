"""
Structured logging configuration for the orchestration core.

This module provides logging utilities with session_id and phase context.
"""

import logging
import sys
from typing import Optional


class _ContextDefaultsFilter(logging.Filter):
    """Fill session_id/phase for records emitted without SessionLogger."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "session_id"):
            record.session_id = "-"
        if not hasattr(record, "phase"):
            record.phase = "-"
        return True


def setup_logging(level: str = "INFO", use_context: bool = True) -> logging.Logger:
    """
    Configure structured logging for the clinical_core package.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_context: If True, use context-aware format with session_id and phase.
                     If False, use simple format for CLI usage (default: True)

    Returns:
        Configured package logger
    """
    logger = logging.getLogger("clinical_core")
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if use_context:
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - [%(session_id)s] [%(phase)s] - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.addFilter(_ContextDefaultsFilter())
    else:
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
    handler.setFormatter(formatter)

    logger.addHandler(handler)
    # Package handler owns output; avoid duplicates through the root logger
    logger.propagate = False

    return logger


class SessionLogger:
    """Logger with session and phase context"""

    def __init__(self, session_id: str, phase: str, logger: Optional[logging.Logger] = None):
        """
        Initialize logger with context.

        Args:
            session_id: Conversation identifier
            phase: Turn phase (e.g., "extraction", "evaluation", "planning")
            logger: Underlying logger (default: clinical_core.turns)
        """
        self.logger = logger or logging.getLogger("clinical_core.turns")
        self.session_id = session_id
        self.phase = phase

    def _log(self, level: int, message: str, **kwargs):
        extra = {
            "session_id": self.session_id,
            "phase": self.phase
        }
        self.logger.log(level, message, extra=extra, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def set_phase(self, phase: str):
        """Update phase context"""
        self.phase = phase
