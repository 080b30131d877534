"""Typed failures raised by the session manager.

Every :class:`SessionError` is an expected, recoverable outcome that maps to a
client-facing HTTP status. :class:`StoreUnavailableError` is deliberately not
part of that hierarchy: a storage outage is an infrastructure failure and must
never be reported to clients as a credential problem.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base class for session-layer failures mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "bad_request"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadRequestError(SessionError):
    """Operation does not apply to this account (400)."""

    status_code = 400
    error_code = "bad_request"


class UnauthorizedError(SessionError):
    """Credentials or refresh token rejected (401)."""

    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(SessionError):
    """Account status does not permit the operation (403)."""

    status_code = 403
    error_code = "forbidden"


class NotFoundError(SessionError):
    """Resource missing or not owned by the caller (404)."""

    status_code = 404
    error_code = "not_found"


class ConflictError(SessionError):
    """Uniqueness violation such as a duplicate email (409)."""

    status_code = 409
    error_code = "conflict"


class TooManyRequestsError(SessionError):
    """Rate limit exceeded (429)."""

    status_code = 429
    error_code = "rate_limited"

    def __init__(self, message: str, *, retry_after: int, headers: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
        self.headers = dict(headers or {})
        self.headers["Retry-After"] = str(retry_after)


class StoreUnavailableError(Exception):
    """The account or session store could not be reached."""


__all__ = [
    "SessionError",
    "BadRequestError",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "TooManyRequestsError",
    "StoreUnavailableError",
]
