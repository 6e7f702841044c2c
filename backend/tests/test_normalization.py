from __future__ import annotations

import pytest

from reimburseme.services.cache import normalize_cache_url, ocr_cache_key
from reimburseme.utils.normalization import (
    confidence_score,
    needs_review,
    normalize_currency,
    normalize_merchant,
    parse_date_robust,
)
from reimburseme.utils.sanitization import sanitize_text, sanitize_url


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("UBER *TRIP HELP.UBER.COM", "UBER"),
        ("starbucks #1234 seattle", "Starbucks"),
        ("shell oil 5744 main st", "Shell Oil"),
        ("blue bottle - downtown", "Blue Bottle"),
        ("", "Unknown Merchant"),
        (None, "Unknown Merchant"),
    ],
)
def test_normalize_merchant(raw, expected):
    assert normalize_merchant(raw) == expected


def test_normalize_currency_symbol_wins():
    assert normalize_currency("€12.50", "USD") == (12.5, "EUR")
    assert normalize_currency("1,299.00", "GBP") == (1299.0, "GBP")
    assert normalize_currency(None) == (0.0, "USD")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2025-03-14", "2025-03-14"),
        ("2025-03-14T18:22:00Z", "2025-03-14"),
        ("03/14/2025", "2025-03-14"),
        ("3-4-2025", "2025-03-04"),
        ("03/14/25", "2025-03-14"),
        ("12/31/99", "1999-12-31"),
        ("Date: 2025-3-4", "2025-03-04"),
        ("02/30/2025", None),
        ("yesterday", None),
        (None, None),
    ],
)
def test_parse_date_robust(raw, expected):
    assert parse_date_robust(raw) == expected


def test_confidence_score_and_review_flag():
    assert confidence_score("high") == 0.9
    assert confidence_score("LOW") == 0.5
    assert confidence_score(None) == 0.7
    assert needs_review(0.7) is True
    assert needs_review(0.9) is False


def test_sanitize_url():
    assert sanitize_url(" https://cdn.example.com/a.jpg ") == "https://cdn.example.com/a.jpg"
    assert sanitize_url("file:///etc/passwd") == ""
    assert sanitize_url("https://") == ""
    assert sanitize_url('https://x.example/"onload') == ""
    assert sanitize_text("<b>receipt</b>.jpg") == "&lt;b&gt;receipt&lt;/b&gt;.jpg"


def test_cache_key_is_owner_scoped_and_normalised():
    assert normalize_cache_url("HTTPS://CDN.Example.com/A.jpg?x=1#frag") == "https://cdn.example.com/A.jpg?x=1"
    assert ocr_cache_key(7, "https://cdn.example.com/a.jpg") == "ocr:7:https://cdn.example.com/a.jpg"
    assert ocr_cache_key(7, "https://cdn.example.com/a.jpg") != ocr_cache_key(8, "https://cdn.example.com/a.jpg")
