"""Domain exceptions.

Each exception carries the HTTP status it maps to and a coarse,
client-safe message; ``reimburseme.api.error_handlers`` turns them into
``{"error": message}`` responses.  Worker code raises the same types so
Dramatiq retry decisions and HTTP responses agree on what is transient.
"""

from __future__ import annotations


class ReimburseError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(ReimburseError):
    """Malformed input: bad URL, too many files, index out of range."""

    status_code = 400
    message = "Invalid request"


class AuthorizationError(ReimburseError):
    status_code = 401
    message = "Unauthorized"


class NotFoundError(ReimburseError):
    """Missing resource, or one owned by somebody else."""

    status_code = 404
    message = "Not found"


class PaymentRequired(ReimburseError):
    """Plan quota exhausted for a metered feature."""

    status_code = 402
    message = "Plan limit reached"


class ExtractionFailure(ReimburseError):
    """Extraction of one file failed.

    Stays inside the worker: batch tasks turn it into a failed file record,
    single-file tasks into a failed receipt.
    """

    message = "Extraction failed"


class AggregationConflict(ReimburseError):
    """The batch session row vanished while a successful result was pending."""

    message = "Batch session disappeared during processing"


class DownstreamFailure(ReimburseError):
    """Queue, cache, database or payment provider error."""

    message = "Upstream service unavailable"
