"""Billing service: plan limits, usage counters and batch-export checkout.

This module centralises pricing/plan enforcement logic so API route
handlers remain thin.  Usage is metered per calendar month in
``subscription_usage``; counters are bumped with a single atomic
``UPDATE ... SET usage_count = usage_count + n`` so concurrent requests
never lose increments.

Stripe is only used for the one-time batch export payment.  The
``StripeGateway`` handle is constructed once with the API key and passed
to the routes as a dependency.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import stripe
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reimburseme.core.config import settings
from reimburseme.core.exceptions import DownstreamFailure, PaymentRequired
from reimburseme.models.enums import PlanType, UsageFeature
from reimburseme.models.tables import BatchSession, SubscriptionUsage, User

logger = logging.getLogger(__name__)

UNLIMITED = float("inf")


@dataclass(frozen=True)
class PlanLimits:
    plan: PlanType
    max_receipts: float  # receipt uploads per calendar month (inf => unlimited)
    max_reports: float  # report exports per calendar month


PLAN_LIMIT_MATRIX: Dict[PlanType, PlanLimits] = {
    PlanType.FREE: PlanLimits(plan=PlanType.FREE, max_receipts=10, max_reports=1),
    PlanType.PRO: PlanLimits(plan=PlanType.PRO, max_receipts=UNLIMITED, max_reports=UNLIMITED),
    PlanType.PREMIUM: PlanLimits(plan=PlanType.PREMIUM, max_receipts=UNLIMITED, max_reports=UNLIMITED),
}


def current_reset_day(when: Optional[dt.date] = None) -> dt.date:
    """First day of the month that ``when`` (default: today, UTC) falls in."""
    when = when or dt.datetime.utcnow().date()
    return when.replace(day=1)


class BillingService:
    """Encapsulates plan limit queries & usage enforcement."""

    def get_limits(self, plan: PlanType | None) -> PlanLimits:
        return PLAN_LIMIT_MATRIX.get(plan or PlanType.FREE, PLAN_LIMIT_MATRIX[PlanType.FREE])

    def limit_for(self, plan: PlanType | None, feature: UsageFeature) -> float:
        limits = self.get_limits(plan)
        if feature is UsageFeature.RECEIPT_UPLOADS:
            return limits.max_receipts
        return limits.max_reports

    async def get_usage(self, db: AsyncSession, user_id: int, feature: UsageFeature, when: Optional[dt.date] = None) -> int:
        q = select(SubscriptionUsage.usage_count).where(
            SubscriptionUsage.user_id == user_id,
            SubscriptionUsage.feature == feature.value,
            SubscriptionUsage.reset_day == current_reset_day(when),
        )
        return int((await db.scalar(q)) or 0)

    async def check_limit(self, db: AsyncSession, user: User, feature: UsageFeature) -> None:
        """Raise ``PaymentRequired`` when ``user`` has used up ``feature`` this month."""
        limit = self.limit_for(user.plan, feature)
        if limit == UNLIMITED:
            return
        usage = await self.get_usage(db, user.id, feature)
        if usage >= limit:
            raise PaymentRequired(f"Monthly {feature.value.replace('_', ' ')} limit reached for your plan")

    async def increment_usage(self, db: AsyncSession, user_id: int, feature: UsageFeature, amount: int = 1) -> None:
        """Atomically add ``amount`` to this month's counter, creating it on first use.

        Commits the session.
        """
        reset_day = current_reset_day()
        stmt = (
            update(SubscriptionUsage)
            .where(
                SubscriptionUsage.user_id == user_id,
                SubscriptionUsage.feature == feature.value,
                SubscriptionUsage.reset_day == reset_day,
            )
            .values(usage_count=SubscriptionUsage.usage_count + amount)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount:
            await db.commit()
            return
        db.add(SubscriptionUsage(user_id=user_id, feature=feature.value, reset_day=reset_day, usage_count=amount))
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent request created the row first
            await db.rollback()
            await db.execute(stmt)
            await db.commit()


class StripeGateway:
    """Thin handle over the Stripe SDK for the batch-export checkout."""

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    def _require_key(self) -> str:
        if not self.api_key:
            raise DownstreamFailure("Payments are not configured")
        return self.api_key

    async def ensure_customer(self, db: AsyncSession, user: User) -> str:
        """Return the user's Stripe customer id, creating the customer on first use."""
        if user.stripe_customer_id:
            return user.stripe_customer_id
        try:
            cust = stripe.Customer.create(
                api_key=self._require_key(),
                email=user.email,
                name=user.name,
                metadata={"user_id": str(user.id)},
            )
        except stripe.StripeError as e:
            logger.exception("Failed to create Stripe customer for user %s: %s", user.id, e)
            raise DownstreamFailure("Unable to create customer") from e
        user.stripe_customer_id = cust["id"]
        await db.commit()
        return user.stripe_customer_id

    def create_batch_export_checkout(self, batch: BatchSession, customer_id: str, user_id: int) -> str:
        """Create a one-time Checkout Session for exporting ``batch``; return its URL."""
        base = settings.APP_URL.rstrip("/")
        try:
            session: Any = stripe.checkout.Session.create(
                api_key=self._require_key(),
                mode="payment",
                customer=customer_id,
                line_items=[
                    {
                        "price_data": {
                            "currency": "usd",
                            "product_data": {
                                "name": "Batch Export",
                                "description": f"Export of batch session {batch.session_id}",
                            },
                            "unit_amount": settings.BATCH_EXPORT_PRICE_CENTS,
                        },
                        "quantity": 1,
                    }
                ],
                success_url=f"{base}/batch-upload?session_id={batch.session_id}&payment=success",
                cancel_url=f"{base}/batch-upload?session_id={batch.session_id}&payment=cancelled",
                metadata={
                    "type": "batch_export",
                    "batch_session_id": batch.session_id,
                    "user_id": str(user_id),
                },
            )
        except stripe.StripeError as e:
            logger.exception("Failed to create batch export checkout for %s: %s", batch.session_id, e)
            raise DownstreamFailure("Unable to start checkout") from e
        return session["url"]


__all__ = [
    "BillingService",
    "PlanLimits",
    "PLAN_LIMIT_MATRIX",
    "StripeGateway",
    "current_reset_day",
]
