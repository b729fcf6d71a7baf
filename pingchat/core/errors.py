"""
Error taxonomy for the ping/conversation pipeline.

Store-level uniqueness races (SQLAlchemy ``IntegrityError``) are absorbed
inside the repositories and never appear here.
"""
from typing import Optional


class PingchatError(Exception):
    """Base class for errors surfaced to callers."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(PingchatError):
    """Malformed, oversized or forbidden content. Not retried."""

    status_code = 422


class RateLimitExceeded(PingchatError):
    """Admission refused by the rate limiter."""

    status_code = 429

    def __init__(self, action_kind: str, retry_after_ms: int):
        super().__init__(f"Rate limit exceeded for {action_kind}; retry in {retry_after_ms} ms")
        self.action_kind = action_kind
        self.retry_after_ms = retry_after_ms


class ConflictError(PingchatError):
    """Duplicate pending ping, or a transition out of a terminal status."""

    status_code = 409


class NotFoundError(PingchatError):
    status_code = 404


class AccessDenied(PingchatError):
    """The acting user is not allowed to perform this operation."""

    status_code = 403


class NetworkUnavailable(PingchatError):
    """The store cannot be reached. Send paths park the action offline."""

    status_code = 503

    def __init__(self, detail: str = "Network unavailable", cause: Optional[BaseException] = None):
        super().__init__(detail)
        self.cause = cause


class QueueFullError(PingchatError):
    status_code = 503
