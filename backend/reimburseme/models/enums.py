"""Enumeration types used throughout the ReimburseMe backend.

Enumerations make it easier to constrain the values that can be
stored in the database or passed through the API. They also
improve readability when dealing with domain concepts like plan
levels, processing statuses or receipt categories.

When modifying these enums you should update any corresponding
database columns or Pydantic validators so that new values are
accepted where appropriate.
"""

from enum import Enum


class PlanType(str, Enum):
    """Subscription tier for a user."""

    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class BatchStatus(str, Enum):
    """Aggregate state of a batch session."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FileStatus(str, Enum):
    """State of a single file inside a batch session."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ReceiptStatus(str, Enum):
    """Processing states for a single-file receipt."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Category(str, Enum):
    MEALS = "Meals"
    TRAVEL = "Travel"
    SUPPLIES = "Supplies"
    OTHER = "Other"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    JPY = "JPY"
    INR = "INR"
    CAD = "CAD"
    AUD = "AUD"
    CHF = "CHF"
    OTHER = "Other"


class UsageFeature(str, Enum):
    """Metered features tracked in ``subscription_usage``."""

    RECEIPT_UPLOADS = "receipt_uploads"
    REPORT_EXPORTS = "report_exports"
