"""Normalisation helpers for values produced by the extraction model.

The model returns loosely typed JSON.  These helpers turn merchant names,
amounts, dates and confidence labels into the canonical shapes stored on
receipts and batch files.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import Optional, Tuple

UNKNOWN_MERCHANT = "Unknown Merchant"

_SYMBOL_TO_CURRENCY = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
}

_CONFIDENCE_SCORES = {"high": 0.9, "medium": 0.7, "low": 0.5}

# Receipts scoring below this need a human look.
REVIEW_THRESHOLD = 0.72

_MERCHANT_NOISE = (
    re.compile(r"\*TRIP.*$", re.IGNORECASE),
    re.compile(r"\s+\*\s*.*$"),
    re.compile(r"\s+#\d+.*$"),
    re.compile(r"\s+\d{4}.*$"),
    re.compile(r"\s+-\s+.*$"),
)

_ISO_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2})")
_YMD = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_MDY_LONG = re.compile(r"(\d{1,2})[/-](\d{1,2})[/-](\d{4})")
_MDY_SHORT = re.compile(r"(\d{1,2})[/-](\d{1,2})[/-](\d{2})\b")


def normalize_merchant(name: Optional[str]) -> str:
    """Strip store numbers, trip codes and location suffixes, then title-case."""
    if not name:
        return UNKNOWN_MERCHANT
    normalized = str(name)
    for pattern in _MERCHANT_NOISE:
        normalized = pattern.sub("", normalized)
    normalized = re.sub(r"\s+", " ", normalized).strip()
    # Uppercase the first letter of each word, leave the rest untouched
    normalized = re.sub(r"\b\w", lambda m: m.group(0).upper(), normalized)
    return normalized or UNKNOWN_MERCHANT


def normalize_currency(amount: object, currency: str = "USD") -> Tuple[float, str]:
    """Split a raw amount such as ``"€12.50"`` into ``(12.5, "EUR")``.

    A currency symbol in the amount wins over ``currency``.
    """
    text = str(amount if amount is not None else "")
    match = re.search(r"(\d+\.?\d*)", text.replace(",", ""))
    value = float(match.group(1)) if match else 0.0
    symbol = re.search(r"[$€£¥₹]", text)
    detected = _SYMBOL_TO_CURRENCY.get(symbol.group(0), currency) if symbol else currency
    return value, detected


def _safe_date(year: int, month: int, day: int) -> Optional[str]:
    try:
        return dt.date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_date_robust(value: Optional[str]) -> Optional[str]:
    """Parse common receipt date formats into ``YYYY-MM-DD``.

    Accepts ISO dates/timestamps, ``MM/DD/YYYY``, ``MM-DD-YYYY`` and the
    two-digit-year variants (``< 50`` means 20xx).  Returns ``None`` when
    nothing valid is found.
    """
    if not value:
        return None
    value = str(value).strip()

    iso = _ISO_PREFIX.match(value)
    if iso:
        parsed = _safe_date(*(int(p) for p in iso.group(1).split("-")))
        if parsed:
            return parsed

    match = _YMD.search(value)
    if match:
        parsed = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed:
            return parsed

    match = _MDY_LONG.search(value)
    if match:
        parsed = _safe_date(int(match.group(3)), int(match.group(1)), int(match.group(2)))
        if parsed:
            return parsed

    match = _MDY_SHORT.search(value)
    if match:
        year = int(match.group(3))
        year = 2000 + year if year < 50 else 1900 + year
        return _safe_date(year, int(match.group(1)), int(match.group(2)))

    return None


def confidence_score(label: Optional[str]) -> float:
    """Map a confidence label to the numeric score stored on receipts."""
    return _CONFIDENCE_SCORES.get((label or "").lower(), _CONFIDENCE_SCORES["medium"])


def needs_review(score: float) -> bool:
    return score < REVIEW_THRESHOLD
