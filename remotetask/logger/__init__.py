"""Logger module for remotetask.

Usage:
    from remotetask.logger import configure_logging, session_logger

    configure_logging("DEBUG", json_format=True)
    session_logger.info("run.start", max_requests=3)

Components accept an explicit ``logger`` so tests can pass their own bound
logger or capture output with ``structlog.testing.capture_logs``.
"""

import structlog

from .structured import Logger, configure_logging, redact_secrets

# Shared logger for modules that are not handed one explicitly
session_logger: Logger = structlog.get_logger("remotetask")

__all__ = [
    "Logger",
    "configure_logging",
    "redact_secrets",
    "session_logger",
]
