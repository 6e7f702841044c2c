"""Common dependencies for FastAPI routes.

This module defines shared dependency functions: database access,
authentication and the service objects routes work with.  Client
handles (task queue, Redis, Stripe) are built once per process and
shared read-only; tests replace them through
``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Depends
from redis import asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from reimburseme.core.config import settings
from reimburseme.core.database import get_db
from reimburseme.core.security import get_current_user  # noqa: F401  re-exported for routers
from reimburseme.services.billing_service import BillingService, StripeGateway
from reimburseme.services.cache import OcrCache, get_redis
from reimburseme.services.dispatcher import BatchDispatcher, TaskQueue
from reimburseme.services.export_service import ExportService
from reimburseme.services.receipt_ocr import ReceiptOcrService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Alias for `get_db` to be imported in routers."""
    async for session in get_db():
        yield session


# -----------------------------------------------------------------------------
# Shared client handles


@lru_cache(maxsize=1)
def get_task_queue() -> TaskQueue:
    """Return the process-wide task queue over the OCR actors."""
    from reimburseme.core.tasks import process_batch_file, process_receipt

    return TaskQueue(process_batch_file, process_receipt)


async def get_redis_client() -> aioredis.Redis:
    return await get_redis()


@lru_cache(maxsize=1)
def get_stripe_gateway() -> StripeGateway:
    return StripeGateway(settings.STRIPE_API_KEY)


def get_billing_service() -> BillingService:
    return BillingService()


# -----------------------------------------------------------------------------
# Services


def get_batch_dispatcher(
    queue: TaskQueue = Depends(get_task_queue),
    billing: BillingService = Depends(get_billing_service),
) -> BatchDispatcher:
    return BatchDispatcher(queue, billing)


def get_receipt_ocr_service(
    queue: TaskQueue = Depends(get_task_queue),
    redis_client: aioredis.Redis = Depends(get_redis_client),
) -> ReceiptOcrService:
    return ReceiptOcrService(OcrCache(redis_client), queue)


def get_export_service(billing: BillingService = Depends(get_billing_service)) -> ExportService:
    return ExportService(billing)
