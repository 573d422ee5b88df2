"""Exception hierarchy for remotetask.

Only ``ConfigurationError`` is fatal to a run; transport and auth failures
are recorded against the request that raised them.
"""

from remotetask.exceptions.base import (
    ConfigurationError,
    RemoteTaskError,
    ValidationError,
)
from remotetask.exceptions.http import AuthError, TransportError

__all__ = [
    "RemoteTaskError",
    "ValidationError",
    "ConfigurationError",
    "TransportError",
    "AuthError",
]
