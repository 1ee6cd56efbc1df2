"""Error taxonomy for RSVP operations.

Every failure raised by the resolvers, the capacity aggregator and the RSVP
coordinator is an :class:`RSVPError`. The HTTP layer renders them uniformly
as ``{"error": kind, "message": message}``.
"""

from __future__ import annotations


class RSVPError(Exception):
    """Base class for failures that terminate an RSVP request."""

    kind = "RSVPError"
    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict[str, str]:
        return {"error": self.kind, "message": self.message}


class BadRequest(RSVPError):
    """Malformed or missing input."""

    kind = "BadRequest"
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


class Unauthorized(RSVPError):
    """Unknown family or mismatched token; the two are reported identically."""

    kind = "Unauthorized"
    status_code = 403


class NotFound(RSVPError):
    kind = "NotFound"
    status_code = 404


class CapExceeded(RSVPError):
    """Admitting the requested count would push the event past its cap."""

    kind = "CapExceeded"
    status_code = 409


class Conflict(RSVPError):
    """Lost the optimistic-concurrency race more times than allowed."""

    kind = "Conflict"
    status_code = 409
    retryable = True


class Cancelled(RSVPError):
    """The caller went away before the write was issued; nothing was saved."""

    kind = "Cancelled"
    # Non-standard "client closed request" status.
    status_code = 499


class StoreFailure(RSVPError):
    kind = "StoreFailure"
    status_code = 503
    retryable = True


UNAUTHORIZED_MESSAGE = "Unknown family or invalid token"
