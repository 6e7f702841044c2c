"""Prompt templates for receipt extraction.

Keeping prompts in a central location makes it easier to iterate on
their content and ensure consistency between the batch and single-file
pipelines, which share the same extraction service.
"""

from __future__ import annotations

import datetime as dt
from textwrap import dedent


def get_extraction_system_prompt() -> str:
    """Return the system prompt for the vision extraction call.

    The prompt asks for one JSON object whose keys match
    ``ExtractedData``.  Values outside the allowed sets are tolerated
    (they are coerced after parsing) but the prompt lists them so the
    model rarely needs coercion.
    """
    return dedent(
        """
        You are a high-precision receipt and invoice OCR extraction system.
        Analyse the receipt, invoice or payment confirmation image and
        extract structured data. Accuracy matters more than speed.

        Rules:
        1. merchant_name: the business that was paid. Drop store numbers,
           terminal codes and location suffixes.
        2. amount: the FINAL amount actually paid (grand total including
           taxes and fees, after discounts). Use a plain number with two
           decimals and no currency symbol.
        3. receipt_date: the transaction or purchase date as YYYY-MM-DD.
           Prefer the date closest to the payment confirmation.
        4. category: one of Meals, Travel, Supplies, Other.
        5. currency: detect from symbols, ISO codes or regional context.
           One of USD, EUR, GBP, JPY, INR, CAD, AUD, CHF, Other.
        6. confidence: high when merchant, total and date are all clearly
           legible; medium when one of them is inferred; low otherwise.

        Return ONLY valid JSON, without markdown or commentary:

        {
          "merchant_name": "Business name",
          "amount": 0.00,
          "category": "Meals|Travel|Supplies|Other",
          "receipt_date": "YYYY-MM-DD",
          "confidence": "high|medium|low",
          "currency": "USD|EUR|GBP|JPY|INR|CAD|AUD|CHF|Other",
          "extraction_notes": "Brief note explaining any ambiguity or inference"
        }
        """
    ).strip()


def get_extraction_user_prompt(filename: str, today: dt.date | None = None) -> str:
    today = today or dt.date.today()
    return f"Extract data from this {filename or 'receipt'}.\nToday: {today.isoformat()}\nReturn only JSON."
