"""Single-file OCR path.

Uploading one receipt either completes synchronously from the OCR cache
or creates a ``pending`` receipt and queues exactly one extraction task.
The task (``process_receipt_task``) updates that receipt row in place;
with a single writer per row no aggregation or locking is needed.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from reimburseme.core.config import settings
from reimburseme.core.database import SessionLocal
from reimburseme.core.exceptions import ExtractionFailure, NotFoundError, ValidationError
from reimburseme.models.enums import ReceiptStatus
from reimburseme.models.schemas import (
    OcrStatusResponse,
    OcrSubmitResponse,
    ReceiptRead,
    ReceiptTask,
)
from reimburseme.models.tables import Receipt, User
from reimburseme.services.cache import OcrCache, OcrCacheWriter
from reimburseme.services.dispatcher import TaskQueue
from reimburseme.utils.normalization import (
    confidence_score,
    needs_review,
    normalize_currency,
    normalize_merchant,
    parse_date_robust,
)
from reimburseme.utils.sanitization import sanitize_text, sanitize_url

logger = logging.getLogger(__name__)


class ReceiptOcrService:
    """API side of the single-file path."""

    def __init__(self, cache: OcrCache, queue: TaskQueue):
        self.cache = cache
        self.queue = queue

    async def submit(self, db: AsyncSession, user: User, file_url: str, filename: Optional[str]) -> OcrSubmitResponse:
        url = sanitize_url(file_url)
        if not url:
            raise ValidationError("Invalid file URL provided")
        name = sanitize_text(filename)

        cached = await self.cache.lookup(user.id, url)
        if cached is not None:
            logger.info("Using cached OCR result for receipt upload by user %s", user.id)
            score = confidence_score(cached.confidence)
            receipt = Receipt(
                owner_id=user.id,
                status=ReceiptStatus.COMPLETED,
                merchant_name=cached.merchant_name,
                amount=cached.amount,
                currency=cached.currency,
                category=cached.category,
                receipt_date=dt.date.fromisoformat(cached.receipt_date),
                confidence=score,
                needs_review=needs_review(score),
                file_url=url,
                file_name=name,
                note=cached.extraction_notes,
            )
            db.add(receipt)
            await db.commit()
            await db.refresh(receipt)
            return OcrSubmitResponse(
                receipt_id=receipt.id,
                status="completed",
                extracted_data=cached,
                message="Receipt processed from cache",
            )

        receipt = Receipt(
            owner_id=user.id,
            status=ReceiptStatus.PENDING,
            merchant_name="Processing...",
            amount=0.0,
            receipt_date=dt.date.today(),
            category="Other",
            file_url=url,
            file_name=name,
        )
        db.add(receipt)
        await db.commit()
        await db.refresh(receipt)

        self.queue.enqueue_receipt(
            ReceiptTask(receipt_id=receipt.id, user_id=user.id, file_url=url, filename=name)
        )
        return OcrSubmitResponse(
            receipt_id=receipt.id,
            status="processing",
            message="Receipt queued for processing",
        )

    async def get_status(self, db: AsyncSession, user: User, receipt_id: int) -> OcrStatusResponse:
        receipt = await db.scalar(
            select(Receipt).where(Receipt.id == receipt_id, Receipt.owner_id == user.id)
        )
        if receipt is None:
            raise NotFoundError("Receipt not found")
        return OcrStatusResponse(status=receipt.status, receipt=ReceiptRead.model_validate(receipt))


def find_duplicate(
    session: Session,
    receipt: Receipt,
    merchant: str,
    amount: float,
    receipt_date: dt.date,
    window_days: Optional[int] = None,
) -> bool:
    """True when the owner already has the same merchant/amount/date receipt recently."""
    window_days = window_days or settings.DUPLICATE_WINDOW_DAYS
    since = dt.datetime.utcnow() - dt.timedelta(days=window_days)
    match = session.scalar(
        select(Receipt.id)
        .where(
            Receipt.owner_id == receipt.owner_id,
            Receipt.id != receipt.id,
            Receipt.merchant_name == merchant,
            Receipt.amount == amount,
            Receipt.receipt_date == receipt_date,
            Receipt.created_at > since,
        )
        .limit(1)
    )
    return match is not None


def process_receipt_task(
    task: ReceiptTask,
    extractor,
    cache_writer: OcrCacheWriter,
    session_factory: Callable[[], Session] = SessionLocal,
) -> Optional[ReceiptStatus]:
    """Extract one receipt and update its row by primary key.

    Extraction failures mark the receipt ``failed``; a missing receipt on
    the success path raises ``NotFoundError`` so the queue retries.
    """
    try:
        data = asyncio.run(extractor.extract(task.file_url, task.filename))
    except ExtractionFailure as exc:
        logger.warning("Extraction failed for receipt %s: %s", task.receipt_id, exc.message)
        with session_factory() as session, session.begin():
            receipt = session.get(Receipt, task.receipt_id)
            if receipt is None:
                logger.warning("Receipt %s vanished before failure could be recorded", task.receipt_id)
                return None
            receipt.status = ReceiptStatus.FAILED
            receipt.note = f"Processing failed: {exc.message}"
        return ReceiptStatus.FAILED

    merchant = normalize_merchant(data.merchant_name)
    amount, currency = normalize_currency(data.amount, data.currency)
    receipt_date = dt.date.fromisoformat(parse_date_robust(data.receipt_date) or dt.date.today().isoformat())
    score = confidence_score(data.confidence)
    normalized = data.model_copy(
        update={
            "merchant_name": merchant,
            "amount": amount,
            "currency": currency,
            "receipt_date": receipt_date.isoformat(),
        }
    )

    with session_factory() as session, session.begin():
        receipt = session.get(Receipt, task.receipt_id)
        if receipt is None:
            raise NotFoundError(f"Receipt {task.receipt_id} not found")
        receipt.merchant_name = merchant
        receipt.amount = amount
        receipt.currency = currency
        receipt.category = normalized.category
        receipt.receipt_date = receipt_date
        receipt.confidence = score
        receipt.needs_review = needs_review(score)
        receipt.is_duplicate = find_duplicate(session, receipt, merchant, amount, receipt_date)
        receipt.note = normalized.extraction_notes
        receipt.status = ReceiptStatus.COMPLETED

    cache_writer.store(task.user_id, task.file_url, normalized)
    logger.info("Receipt %s completed (merchant=%s)", task.receipt_id, merchant)
    return ReceiptStatus.COMPLETED
