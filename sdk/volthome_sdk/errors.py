"""
Error types for VoltHome SDK.

This module defines all exception types raised by the SDK:
- VoltHomeError: Base exception
- ConnectionError: Server unreachable
- AuthenticationError: Missing or rejected user identity
- ValidationError: Request rejected as malformed
- ReferentialError: Batch references an entity outside the project
- GroupUnresolvedError: Device sent without group or room hint
- ConstraintError: Store constraint violation
- NotFoundError: Project missing or not visible
- RateLimitedError: Too many requests
- UnavailableError: Store busy or timed out (safe to retry)
- ServerError: Unexpected server failure

Invariants:
    - All errors inherit from VoltHomeError
    - Errors keep the server's error code, details and correlation id
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class VoltHomeError(Exception):
    """Base exception for all VoltHome SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        status_code: HTTP status, when the error came from a response
        cid: Server correlation id, when the error came from a response
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
        cid: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "volthome_error"
        self.details = details or {}
        self.status_code = status_code
        self.cid = cid

    @property
    def retryable(self) -> bool:
        return False


class ConnectionError(VoltHomeError):
    """Failed to reach the sync server.

    Raised when:
    - Server is unreachable
    - Connection times out
    """

    def __init__(self, message: str, address: Optional[str] = None) -> None:
        super().__init__(message, code="connection_error", details={"address": address})
        self.address = address

    @property
    def retryable(self) -> bool:
        return True


class AuthenticationError(VoltHomeError):
    """The request carried no user identity."""


class ValidationError(VoltHomeError):
    """The server rejected the request as malformed."""


class ReferentialError(VoltHomeError):
    """A batch record references a room or group that is not live in the project."""


class GroupUnresolvedError(VoltHomeError):
    """A device had neither a group id nor a room hint."""


class ConstraintError(VoltHomeError):
    """The store rejected a write because of a constraint (e.g. duplicate name)."""


class NotFoundError(VoltHomeError):
    """Project not found, or owned by another user."""


class RateLimitedError(VoltHomeError):
    """Too many requests.

    Attributes:
        retry_after: Seconds to wait before retrying
    """

    def __init__(self, message: str, retry_after: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class UnavailableError(VoltHomeError):
    """The store was busy or timed out. The request can be retried unchanged."""

    @property
    def retryable(self) -> bool:
        return True


class ServerError(VoltHomeError):
    """Unexpected server failure."""


_ERRORS_BY_CODE = {
    "unauthorized": AuthenticationError,
    "bad_request": ValidationError,
    "invalid_id": ValidationError,
    "referential_error": ReferentialError,
    "group_unresolved": GroupUnresolvedError,
    "constraint_violation": ConstraintError,
    "not_found": NotFoundError,
    "rate_limited": RateLimitedError,
    "db_timeout": UnavailableError,
    "server_error": ServerError,
}

_ERRORS_BY_STATUS = {
    400: ValidationError,
    401: AuthenticationError,
    404: NotFoundError,
    429: RateLimitedError,
    503: UnavailableError,
}


def error_from_response(
    status_code: int,
    body: Any,
    retry_after: Optional[str] = None,
) -> VoltHomeError:
    """Build the SDK exception for an error response.

    Args:
        status_code: HTTP status of the response
        body: Decoded JSON body (any shape)
        retry_after: Retry-After header value, if present

    Returns:
        The most specific VoltHomeError subclass for the response
    """
    if not isinstance(body, dict):
        body = {}

    code = body.get("error") or f"http_{status_code}"
    message = body.get("message") or f"Request failed with status {status_code}"
    error_cls = _ERRORS_BY_CODE.get(code) or _ERRORS_BY_STATUS.get(status_code)
    if error_cls is None:
        error_cls = ServerError if status_code >= 500 else VoltHomeError

    kwargs: Dict[str, Any] = {
        "code": code,
        "details": body.get("details") or {},
        "status_code": status_code,
        "cid": body.get("cid"),
    }
    if error_cls is RateLimitedError:
        seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
        return RateLimitedError(message, retry_after=seconds, **kwargs)
    return error_cls(message, **kwargs)
