"""
Exception types raised by the transport and codec layers.

The submitter, poller, reconciler and approval path catch these and turn
them into typed outcomes. Read-only authorizer queries let them propagate.
"""
from __future__ import annotations


class TallyError(Exception):
    """Base class for all Tally adapter errors."""
    pass


class TallyConnectionError(TallyError):
    """Raised when the Tally endpoint cannot be reached."""
    pass


class TallyTimeoutError(TallyError):
    """Raised when a request exceeds its deadline."""

    def __init__(self, timeout: float):
        super().__init__(f"Request timed out after {timeout}s")
        self.timeout = timeout


class TallyHTTPError(TallyError):
    """Raised on a non-2xx HTTP status."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"HTTP {status_code}: {body[:200]}")
        self.status_code = status_code
        self.body = body


class TallyAuthError(TallyHTTPError):
    """403 from the gateway: token expired or company access revoked."""

    def __init__(self, body: str = ""):
        super().__init__(403, body)


class MalformedResponseError(TallyError):
    """A 2xx response that carries none of the expected tags."""
    pass


class PaymentGatewayError(Exception):
    """Raised when the payment REST API fails or refuses a request."""
    pass
