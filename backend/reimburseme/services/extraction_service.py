"""Receipt extraction service using the OpenAI vision API.

This service encapsulates the logic required to turn one uploaded file
(referenced by URL) into an ``ExtractedData`` instance.  The file is
downloaded with httpx, PDFs are rasterised to their first page, the
image is preprocessed with Pillow and sent to a vision-capable chat
model that answers with a JSON object.  The raw answer is coerced into
the closed value sets of ``ExtractedData``.

Every failure mode (download error, unsupported content type, model
timeout, empty or malformed answer) surfaces as ``ExtractionFailure``;
callers decide whether that becomes a failed file record or a failed
receipt.  The service never touches the database, so it can run outside
any lock or transaction.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import ValidationError as PydanticValidationError

from reimburseme.core.config import settings
from reimburseme.core.exceptions import ExtractionFailure
from reimburseme.models.schemas import ExtractedData
from reimburseme.utils.image_processing import preprocess_image, render_pdf_first_page, to_data_url
from reimburseme.utils.prompts import get_extraction_system_prompt, get_extraction_user_prompt

logger = logging.getLogger(__name__)


class ExtractionService:
    """Service responsible for extracting structured receipt data.

    Diagnostic logging can be enabled by setting env var EXTRACTION_DEBUG=1.
    Both the HTTP client and the OpenAI client may be injected; when
    omitted they are created per call from settings.
    """

    def __init__(
        self,
        openai_client: Optional[AsyncOpenAI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        model: Optional[str] = None,
    ) -> None:
        self.model: str = model or settings.EXTRACTION_MODEL
        self.debug: bool = os.getenv("EXTRACTION_DEBUG", "0").lower() in {"1", "true", "yes"}
        self._openai = openai_client
        self._http = http_client
        if self.debug:
            logger.info("[extraction:init] model=%s", self.model)

    def _openai_client(self) -> AsyncOpenAI:
        if self._openai is not None:
            return self._openai
        api_key = settings.OPENAI_API_KEY or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ExtractionFailure("OpenAI API key not configured")
        return AsyncOpenAI(api_key=api_key, timeout=settings.EXTRACTION_TIMEOUT_SECONDS)

    async def fetch_image(self, file_url: str, filename: str = "") -> bytes:
        """Download ``file_url`` and return image bytes ready for preprocessing."""
        headers = {"User-Agent": "Mozilla/5.0"}  # Some CDNs require this
        try:
            if self._http is not None:
                resp = await self._http.get(file_url, headers=headers)
            else:
                async with httpx.AsyncClient(
                    timeout=settings.IMAGE_FETCH_TIMEOUT_SECONDS, follow_redirects=True
                ) as client:
                    resp = await client.get(file_url, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExtractionFailure(f"Failed to fetch image: {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise ExtractionFailure(f"Failed to fetch image: {exc.__class__.__name__}") from exc

        content_type = (resp.headers.get("content-type") or "image/jpeg").split(";")[0].strip().lower()
        data = resp.content
        if content_type == "application/pdf" or filename.lower().endswith(".pdf"):
            try:
                return render_pdf_first_page(data)
            except ValueError as exc:
                raise ExtractionFailure(str(exc)) from exc
        if not content_type.startswith("image/"):
            raise ExtractionFailure(f"Unsupported file type: {content_type}")
        return data

    async def _complete(self, data_url: str, filename: str) -> str:
        client = self._openai_client()
        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": get_extraction_system_prompt()},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": get_extraction_user_prompt(filename)},
                            {"type": "image_url", "image_url": {"url": data_url, "detail": "high"}},
                        ],
                    },
                ],
                max_tokens=700,
                temperature=0,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as exc:
            raise ExtractionFailure(f"Model call failed: {exc.__class__.__name__}") from exc
        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            raise ExtractionFailure("No content in response")
        return content

    @staticmethod
    def parse(raw: str) -> ExtractedData:
        """Parse and coerce the model's JSON answer."""
        try:
            payload: Any = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ExtractionFailure("Model returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise ExtractionFailure("Model returned a non-object JSON value")
        payload["date_source"] = "ai_vision"
        payload["extraction_notes"] = payload.get("extraction_notes") or "Extracted using AI"
        try:
            return ExtractedData.model_validate(payload)
        except (PydanticValidationError, TypeError, ValueError) as exc:
            raise ExtractionFailure("Model output failed validation") from exc

    async def extract(self, file_url: str, filename: str = "") -> ExtractedData:
        """Extract receipt data from the file at ``file_url``.

        :raises ExtractionFailure: on any download, decoding or model error
        """
        if self.debug:
            logger.info("[extraction] start url=%s filename=%s", file_url, filename)
        image = await self.fetch_image(file_url, filename)
        try:
            processed = preprocess_image(image)
        except ValueError as exc:
            raise ExtractionFailure(str(exc)) from exc
        raw = await self._complete(to_data_url(processed), filename)
        data = self.parse(raw)
        if self.debug:
            logger.info(
                "[extraction] done merchant=%s amount=%s confidence=%s",
                data.merchant_name,
                data.amount,
                data.confidence,
            )
        return data
