"""
Error taxonomy for the ad worker.

Every error carries the HTTP status the API surface maps it to and a message
that is safe to show to the client.
"""

from typing import Optional


class AdWorkError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


# ── Request / caller errors ─────────────────────────────────────────────────

class ValidationError(AdWorkError):
    status_code = 400


class UnauthorizedError(AdWorkError):
    status_code = 401


class InsufficientCreditsError(AdWorkError):
    status_code = 402


class ForbiddenError(AdWorkError):
    status_code = 403


class NotFoundError(AdWorkError):
    status_code = 404


class PayloadTooLargeError(AdWorkError):
    status_code = 413


class QuotaExceededError(AdWorkError):
    status_code = 429
    retryable = True

    def __init__(self, message: str, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class CapacityError(AdWorkError):
    status_code = 503
    retryable = True


# ── Upstream provider errors ─────────────────────────────────────────────────

class UpstreamRateLimited(AdWorkError):
    """Provider returned a rate-limit or overload signal."""

    status_code = 429
    retryable = True

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamConfigError(AdWorkError):
    """Provider rejected our credentials, or they are not configured."""


class UpstreamTimeout(AdWorkError):
    pass


class GenerationFailed(AdWorkError):
    """Provider explicitly reported a failure (content policy, bad input...)."""


class GenerationCanceled(AdWorkError):
    pass


class CopyGenerationError(AdWorkError):
    """Ad copy could not be produced. Always recovered with fallback copy."""
