"""
Error taxonomy shared by the guard, the submission pipeline, provisioning
and the auth wrappers. Each class carries the HTTP status the API answers
with; `middleware.error_handler` renders them as `{"error": message}`.
"""

from __future__ import annotations


class FeedbackServiceError(Exception):
    """Base error for failures the API reports to the caller."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Unauthenticated(FeedbackServiceError):
    """No session, or the session token could not be validated."""

    status_code = 401


class Forbidden(FeedbackServiceError):
    """The caller's role is not allowed to perform the operation."""

    status_code = 403


class InvalidArgument(FeedbackServiceError):
    status_code = 400


class Conflict(FeedbackServiceError):
    """A unique credential kept colliding after all retries."""

    status_code = 409


class UpstreamFailure(FeedbackServiceError):
    """The relational store or the identity provider reported an error."""

    status_code = 500


class UpstreamTimeout(UpstreamFailure):
    status_code = 504


class RedirectRequired(Exception):
    """Raised by page-level guards; rendered as a redirect response."""

    def __init__(self, location: str) -> None:
        super().__init__(location)
        self.location = location


__all__ = [
    "Conflict",
    "FeedbackServiceError",
    "Forbidden",
    "InvalidArgument",
    "RedirectRequired",
    "Unauthenticated",
    "UpstreamFailure",
    "UpstreamTimeout",
]
