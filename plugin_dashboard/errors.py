#!/usr/bin/env python3
"""
Exceptions raised by the API clients and the settings layer.
"""

from typing import Any, Optional


class DashboardError(Exception):
    """Base class for all dashboard errors."""
    pass


class RemoteFailure(DashboardError):
    """Raised when a remote API answers with a non-2xx status."""

    def __init__(self, url: str, status: int, status_text: str = "", body: Any = None):
        self.url = url
        self.status = status
        self.status_text = status_text
        self.body = body
        super().__init__(f"Request for {url} failed: {status} {status_text}. Message: {self.message}")

    @property
    def message(self) -> str:
        """Best-effort human readable message extracted from the response body."""
        if isinstance(self.body, dict):
            return str(self.body.get("message", "No error details available"))
        if self.body:
            return str(self.body)
        return "No error details available"


class AuthenticationFailure(RemoteFailure):
    """Raised on HTTP 401: the token is invalid or expired."""
    pass


class RateLimitExceeded(RemoteFailure):
    """Raised when GitHub reports that the API rate limit was exceeded."""
    pass


class ParseFailure(DashboardError):
    """Raised when a successful response does not contain valid JSON."""

    def __init__(self, url: str, detail: str):
        self.url = url
        self.detail = detail
        super().__init__(f"Failed to parse JSON response for {url}: {detail}")


class NetworkFailure(DashboardError):
    """Raised when the request could not be completed at the transport level."""

    def __init__(self, url: str, cause: Exception):
        self.url = url
        self.cause = cause
        super().__init__(f"Network error while contacting {url}: {cause}")


class ValidationFailure(DashboardError):
    """Raised when user supplied settings are rejected."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)
