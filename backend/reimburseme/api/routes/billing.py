from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reimburseme.api.dependencies import get_current_user, get_db_session, get_stripe_gateway
from reimburseme.core.exceptions import NotFoundError, ValidationError
from reimburseme.core.observability import sentry_breadcrumb, sentry_metric_inc
from reimburseme.models.enums import BatchStatus
from reimburseme.models.schemas import CheckoutResponse, ExportCheckoutRequest
from reimburseme.models.tables import BatchSession, User
from reimburseme.services.billing_service import StripeGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.post("/export-checkout", response_model=CheckoutResponse)
async def create_export_checkout(
    body: ExportCheckoutRequest,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """Create a one-time Stripe Checkout Session to unlock a batch export.

    The batch must belong to the caller, be ``completed`` and not be paid
    for yet.
    """
    batch = await db.scalar(
        select(BatchSession).where(
            BatchSession.session_id == body.batch_session_id,
            BatchSession.owner_id == user.id,
            BatchSession.status == BatchStatus.COMPLETED,
        )
    )
    if batch is None:
        raise NotFoundError("Batch session not found or not completed")
    if batch.paid_at is not None:
        raise ValidationError("Batch session already paid")

    customer_id = await gateway.ensure_customer(db, user)
    url = gateway.create_batch_export_checkout(batch, customer_id, user.id)

    sentry_metric_inc("billing.export_checkout.created")
    sentry_breadcrumb(
        category="billing",
        message="export_checkout.created",
        data={"batch_session_id": batch.session_id},
    )
    logger.info("Created export checkout for batch %s (user %s)", batch.session_id, user.id)
    return CheckoutResponse(url=url)
