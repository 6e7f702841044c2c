from __future__ import annotations

import datetime as dt
import json
import types
from io import BytesIO

import httpx
import pytest
from PIL import Image

from reimburseme.core.exceptions import ExtractionFailure
from reimburseme.services.extraction_service import ExtractionService


def _png_bytes(size=(40, 60)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color="white").save(buf, format="PNG")
    return buf.getvalue()


def _http(content: bytes, content_type: str, status: int = 200) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=content, headers={"content-type": content_type})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeOpenAI:
    def __init__(self, content):
        self.requests = []

        async def create(**kwargs):
            self.requests.append(kwargs)
            message = types.SimpleNamespace(content=content)
            return types.SimpleNamespace(choices=[types.SimpleNamespace(message=message)])

        self.chat = types.SimpleNamespace(completions=types.SimpleNamespace(create=create))


def test_parse_sets_source_and_default_notes():
    data = ExtractionService.parse(json.dumps({"merchant_name": "Acme", "amount": 3, "category": "Supplies"}))
    assert data.merchant_name == "Acme"
    assert data.category == "Supplies"
    assert data.date_source == "ai_vision"
    assert data.extraction_notes == "Extracted using AI"


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", json.dumps({"amount": -5})])
def test_parse_rejects_unusable_output(raw):
    with pytest.raises(ExtractionFailure):
        ExtractionService.parse(raw)


@pytest.mark.asyncio
async def test_extract_downloads_preprocesses_and_parses():
    answer = json.dumps({"merchant_name": "Acme", "amount": "19.99", "receipt_date": "2025-01-02", "confidence": "high"})
    openai_client = FakeOpenAI(answer)
    service = ExtractionService(openai_client=openai_client, http_client=_http(_png_bytes(), "image/png"))

    data = await service.extract("https://cdn.example.com/r.png", "r.png")

    assert data.amount == 19.99
    assert data.receipt_date == "2025-01-02"
    (request,) = openai_client.requests
    assert request["temperature"] == 0
    assert request["response_format"] == {"type": "json_object"}
    image_part = request["messages"][1]["content"][1]
    assert image_part["image_url"]["url"].startswith("data:image/jpeg;base64,")


@pytest.mark.asyncio
async def test_http_error_is_an_extraction_failure():
    service = ExtractionService(openai_client=FakeOpenAI("{}"), http_client=_http(b"", "text/plain", status=404))
    with pytest.raises(ExtractionFailure) as exc_info:
        await service.extract("https://cdn.example.com/missing.jpg")
    assert exc_info.value.message == "Failed to fetch image: 404"


@pytest.mark.asyncio
async def test_non_image_content_is_rejected():
    service = ExtractionService(openai_client=FakeOpenAI("{}"), http_client=_http(b"<html/>", "text/html"))
    with pytest.raises(ExtractionFailure) as exc_info:
        await service.extract("https://cdn.example.com/page")
    assert exc_info.value.message == "Unsupported file type: text/html"


@pytest.mark.asyncio
async def test_empty_model_answer_is_an_extraction_failure():
    service = ExtractionService(openai_client=FakeOpenAI(None), http_client=_http(_png_bytes(), "image/png"))
    with pytest.raises(ExtractionFailure):
        await service.extract("https://cdn.example.com/r.png")


def test_parse_coerces_non_string_values_to_defaults():
    raw = json.dumps(
        {
            "merchant_name": None,
            "amount": 3,
            "category": ["Meals"],
            "confidence": {"level": "high"},
            "currency": 840,
            "receipt_date": ["2025-01-02"],
        }
    )

    data = ExtractionService.parse(raw)

    assert data.merchant_name == "Unknown Merchant"
    assert data.amount == 3.0
    assert data.category == "Other"
    assert data.confidence == "medium"
    assert data.currency == "USD"
    assert data.receipt_date == dt.date.today().isoformat()


def test_parse_turns_validator_type_errors_into_extraction_failure(monkeypatch):
    from reimburseme.services import extraction_service

    class Exploding:
        @staticmethod
        def model_validate(payload):
            raise TypeError("unhashable type: 'list'")

    monkeypatch.setattr(extraction_service, "ExtractedData", Exploding)

    with pytest.raises(ExtractionFailure):
        ExtractionService.parse(json.dumps({"merchant_name": "Cafe"}))


def test_parse_keeps_amount_and_currency_from_symbol():
    data = ExtractionService.parse(json.dumps({"merchant_name": "Cafe", "amount": "€8.40", "currency": "USD"}))
    assert data.amount == 8.4
    assert data.currency == "EUR"
