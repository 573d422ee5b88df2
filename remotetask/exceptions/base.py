"""Base exception classes for remotetask.

Every error carries a machine-readable ``code``, a human ``message`` and a
``details`` dict so callers can log failures as structured events.
"""

from __future__ import annotations

from typing import Any


class RemoteTaskError(Exception):
    """Root of the remotetask exception hierarchy."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = dict(details) if details else {}

    def __str__(self) -> str:
        if not self.details:
            return f"{self.code}: {self.message}"
        rendered = ", ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{self.code}: {self.message} ({rendered})"


class ValidationError(RemoteTaskError):
    """Raised when input data is structurally invalid."""

    pass


class ConfigurationError(RemoteTaskError):
    """Raised when a run cannot be configured.

    Root cause: a malformed configuration document, or a session whose
    transport could not be built (e.g. unreadable CA bundle).
    Remediation: fix the named key or TLS setting; this error stops a run.
    """

    default_code = "CONFIGURATION"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=self.default_code, message=message, details=details)
