"""Pydantic schemas for request, response and task payload models.

Pydantic models are used for validating and serialising data that
crosses a boundary of the system: HTTP requests, Dramatiq task
payloads, the JSON ``files`` column of a batch session and the output
of the extraction model.  They ensure only well-formed data enters the
business logic.

Wire names are camelCase (``batchSessionId``, ``extractedData``) while
Python attributes stay snake_case; every model that has aliases sets
``populate_by_name`` so both spellings are accepted on input.
"""

from __future__ import annotations

import datetime as dt
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from reimburseme.utils.normalization import UNKNOWN_MERCHANT, normalize_currency, parse_date_robust
from .enums import BatchStatus, Category, Confidence, Currency, FileStatus, ReceiptStatus

_CATEGORIES = {c.value for c in Category}
_CONFIDENCES = {c.value for c in Confidence}
_CURRENCY_CODES = {c.value.upper(): c.value for c in Currency}


# ---------------------------------------------------------------------------
# Extraction output


class ExtractedData(BaseModel):
    """Structured fields extracted from one receipt image.

    Validators coerce loosely typed model output into the closed value
    sets instead of rejecting it: unknown categories become ``Other``,
    unknown confidence labels ``medium``, unknown currencies ``USD`` and
    unparseable dates today's date.  Values of the wrong JSON type fall
    back to the same defaults, and a currency symbol in a string amount
    (``"€8.40"``) sets ``currency``.
    """

    model_config = ConfigDict(use_enum_values=True)

    merchant_name: str = UNKNOWN_MERCHANT
    amount: float = Field(default=0.0, ge=0)
    category: Category = Category.OTHER
    receipt_date: str = Field(default_factory=lambda: dt.date.today().isoformat())
    currency: Currency = Currency.USD
    confidence: Confidence = Confidence.MEDIUM
    date_source: str = "ai_vision"
    extraction_notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _amount_symbol(cls, data: Any) -> Any:
        # "$12.50" carries its currency; the symbol wins over the stated code
        if isinstance(data, dict) and isinstance(data.get("amount"), str):
            value, currency = normalize_currency(data["amount"], "")
            if currency:
                data = {**data, "amount": value, "currency": currency}
        return data

    @field_validator("merchant_name", mode="before")
    @classmethod
    def _merchant(cls, v: Any) -> str:
        text = str(v).strip() if isinstance(v, (str, int, float)) else ""
        return text or UNKNOWN_MERCHANT

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v: Any) -> float:
        if isinstance(v, bool):
            return 0.0
        if isinstance(v, (int, float)):
            return float(v)
        if not isinstance(v, str) or not v.strip():
            return 0.0
        try:
            return float(v.replace(",", "").strip())
        except ValueError:
            return normalize_currency(v)[0]

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v: Any) -> str:
        return v if isinstance(v, str) and v in _CATEGORIES else Category.OTHER.value

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> str:
        label = v.strip().lower() if isinstance(v, str) else ""
        return label if label in _CONFIDENCES else Confidence.MEDIUM.value

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, v: Any) -> str:
        code = v.strip().upper() if isinstance(v, str) else ""
        return _CURRENCY_CODES.get(code, Currency.USD.value)

    @field_validator("receipt_date", mode="before")
    @classmethod
    def _receipt_date(cls, v: Any) -> str:
        if isinstance(v, dt.date):
            return v.isoformat()
        if not isinstance(v, str):
            return dt.date.today().isoformat()
        return parse_date_robust(v) or dt.date.today().isoformat()


# ---------------------------------------------------------------------------
# Batch session records


class FileRecord(BaseModel):
    """One element of ``BatchSession.files``."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    url: str
    name: str = ""
    status: FileStatus = FileStatus.PENDING
    extracted_data: Optional[ExtractedData] = Field(default=None, alias="extractedData")
    error: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        """Serialise to the stored JSON shape (camelCase, no null keys)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FileCompleted(BaseModel):
    status: Literal["completed"] = "completed"
    extracted_data: ExtractedData


class FileFailed(BaseModel):
    status: Literal["failed"] = "failed"
    reason: str


# The only shapes the session aggregator accepts
FileOutcome = Annotated[Union[FileCompleted, FileFailed], Field(discriminator="status")]


# ---------------------------------------------------------------------------
# Task payloads (Dramatiq message bodies)


class BatchFileTask(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_session_id: int = Field(alias="batchSessionId")
    file_index: int = Field(alias="fileIndex", ge=0)
    user_id: int = Field(alias="userId")
    file_url: str
    filename: str = ""

    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ReceiptTask(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    receipt_id: int = Field(alias="receiptId")
    user_id: int = Field(alias="userId")
    file_url: str
    filename: str = ""

    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# API request/response schemas


class BatchFileIn(BaseModel):
    url: str
    name: Optional[str] = None


class BatchOcrRequest(BaseModel):
    files: List[BatchFileIn]


class BatchSessionRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    session_id: str = Field(alias="sessionId")
    status: BatchStatus
    files: List[FileRecord]
    payment_id: Optional[str] = Field(default=None, alias="paymentId")
    paid_at: Optional[dt.datetime] = Field(default=None, alias="paidAt")
    created_at: Optional[dt.datetime] = Field(default=None, alias="createdAt")

    @classmethod
    def from_row(cls, row: Any) -> "BatchSessionRead":
        return cls(
            id=row.id,
            session_id=row.session_id,
            status=row.status,
            files=[FileRecord.model_validate(f) for f in (row.files or [])],
            payment_id=row.payment_id,
            paid_at=row.paid_at,
            created_at=row.created_at,
        )


class BatchSubmitResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    batch_session: BatchSessionRead = Field(alias="batchSession")
    message: str = "Batch processing queued successfully"


class BatchStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_session: BatchSessionRead = Field(alias="batchSession")


class BatchSessionListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_sessions: List[BatchSessionRead] = Field(alias="batchSessions")


class OcrRequest(BaseModel):
    file_url: str
    filename: Optional[str] = None


class OcrSubmitResponse(BaseModel):
    success: bool = True
    receipt_id: int
    status: str
    extracted_data: Optional[ExtractedData] = None
    message: str


class ReceiptRead(BaseModel):
    id: int
    status: ReceiptStatus
    merchant_name: str
    amount: float
    currency: str
    category: str
    receipt_date: dt.date
    confidence: Optional[float] = None
    needs_review: bool = False
    is_duplicate: bool = False
    file_url: str
    file_name: Optional[str] = None
    note: Optional[str] = None
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class OcrStatusResponse(BaseModel):
    status: ReceiptStatus
    receipt: ReceiptRead


class ExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_session_id: Optional[str] = Field(default=None, alias="batchSessionId")


class ExportCheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_session_id: str = Field(alias="batchSessionId")


class CheckoutResponse(BaseModel):
    url: str
