"""
Gateway Error Taxonomy
======================

Exceptions raised by the catalog gateway. Each carries the HTTP status the
endpoint answers with, so the HTTP layer can surface them as
``{"error": message}`` without per-call-site mapping.

- InvalidRequestError: structurally invalid request (400)
- AuthenticationError: missing or rejected credential on a protected action (401)
- UpstreamUnavailableError: every attempt against the upstream failed at the
  network level; the router turns this into degraded output, never a 5xx
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class InvalidRequestError(GatewayError):
    """Unknown action, malformed identifier or unusable parameters."""

    status_code = 400


class AuthenticationError(GatewayError):
    """Raised when a protected action is called without a valid credential."""

    status_code = 401


class UpstreamUnavailableError(GatewayError):
    """Raised when maximum upstream attempts have been exhausted"""

    status_code = 502

    def __init__(self, attempts: int, last_error: Exception):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Upstream unavailable after {attempts} attempts. Last error: {last_error}"
        )
