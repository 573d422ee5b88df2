"""Request-level exceptions raised by the authenticated session.

Both are local to a single outcome: the scheduler records them as a failed
request and moves on to the next cycle.
"""

from __future__ import annotations

from typing import Any

from remotetask.exceptions.base import RemoteTaskError


class TransportError(RemoteTaskError):
    """Raised when a request never produced an HTTP response.

    Root cause: connection refused, DNS failure, TLS failure or timeout.
    ``cause`` keeps the original httpx exception for classification.
    """

    default_code = "TRANSPORT"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        cause: BaseException | None = None,
    ):
        super().__init__(code=self.default_code, message=message, details=details)
        self.cause = cause


class AuthError(RemoteTaskError):
    """Raised when Digest authentication cannot complete.

    Root cause: the server rejected the computed credentials after the single
    re-challenge, or sent a challenge this client cannot answer.
    Remediation: check username/password; servers requiring qop=auth are not
    supported.
    """

    default_code = "AUTH"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=self.default_code, message=message, details=details)
