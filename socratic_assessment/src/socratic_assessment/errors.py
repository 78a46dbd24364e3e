"""
Assessment Errors

Typed failures raised by the assessment engine. Each error carries a stable
machine-readable code and the HTTP status the backend maps it to.
"""

from typing import Optional


class AssessmentError(Exception):
    """Base class for every failure surfaced to the turn caller."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code:
            self.code = code

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(AssessmentError):
    """Missing or malformed turn fields. Raised before any external call."""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthError(AssessmentError):
    code = "UNAUTHORIZED"
    status_code = 401


class NotFoundError(AssessmentError):
    """Article or session absent, or the session belongs to someone else."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(AssessmentError):
    """Mutation rejected: the session is completed or was updated concurrently."""

    code = "SESSION_COMPLETED"
    status_code = 409


class RateLimitError(AssessmentError):
    """Generation service still throttling after the permitted retries."""

    code = "RATE_LIMIT"
    status_code = 429

    def __init__(self, message: str, retry_after_seconds: int, *, details: Optional[str] = None):
        super().__init__(message, details=details)
        self.retry_after_seconds = max(1, int(retry_after_seconds))

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["retryAfterSeconds"] = self.retry_after_seconds
        return payload


class GenerationTimeoutError(AssessmentError):
    """The turn ran past its timeout. Safe to retry: nothing was persisted."""

    code = "GENERATION_TIMEOUT"
    status_code = 503

    def __init__(self, message: str, retry_after_seconds: int = 5, *, details: Optional[str] = None):
        super().__init__(message, details=details)
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["retryAfterSeconds"] = self.retry_after_seconds
        return payload


class UnclassifiedServiceError(AssessmentError):
    code = "INTERNAL_ERROR"
    status_code = 500


class GenerationServiceError(UnclassifiedServiceError):
    """Non rate-limit failure of the generation service."""


class DatastoreError(UnclassifiedServiceError):
    """Datastore read or write failed."""
