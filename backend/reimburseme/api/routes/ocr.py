"""API routes for receipt OCR: single-file upload and batch processing."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reimburseme.api.dependencies import (
    get_batch_dispatcher,
    get_current_user,
    get_db_session,
    get_receipt_ocr_service,
)
from reimburseme.core.exceptions import NotFoundError
from reimburseme.core.observability import sentry_set_tags
from reimburseme.models.schemas import (
    BatchOcrRequest,
    BatchSessionRead,
    BatchStatusResponse,
    BatchSubmitResponse,
    OcrRequest,
    OcrStatusResponse,
    OcrSubmitResponse,
)
from reimburseme.models.tables import BatchSession, User
from reimburseme.services.dispatcher import BatchDispatcher
from reimburseme.services.receipt_ocr import ReceiptOcrService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ocr", tags=["ocr"])


@router.post("", response_model=OcrSubmitResponse)
async def submit_receipt(
    body: OcrRequest,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    service: ReceiptOcrService = Depends(get_receipt_ocr_service),
):
    """Upload one receipt.

    Completes immediately when the file was extracted before, otherwise
    returns a ``processing`` receipt id to poll.
    """
    return await service.submit(db, user, body.file_url, body.filename)


@router.get("/status/{receipt_id}", response_model=OcrStatusResponse)
async def receipt_status(
    receipt_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    service: ReceiptOcrService = Depends(get_receipt_ocr_service),
):
    return await service.get_status(db, user, receipt_id)


@router.post("/batch", response_model=BatchSubmitResponse, response_model_by_alias=True)
async def submit_batch(
    body: BatchOcrRequest,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    dispatcher: BatchDispatcher = Depends(get_batch_dispatcher),
):
    """Create a batch session and queue one extraction per file."""
    sentry_set_tags({"batch.files": len(body.files)})
    batch = await dispatcher.submit_batch(db, user, body.files)
    return BatchSubmitResponse(batch_session=BatchSessionRead.from_row(batch))


@router.get("/batch/status/{session_id}", response_model=BatchStatusResponse, response_model_by_alias=True)
async def batch_status(
    session_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
):
    batch = await db.scalar(
        select(BatchSession).where(BatchSession.session_id == session_id, BatchSession.owner_id == user.id)
    )
    if batch is None:
        raise NotFoundError("Batch session not found")
    return BatchStatusResponse(batch_session=BatchSessionRead.from_row(batch))
