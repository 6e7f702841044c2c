from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict

import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from redis import asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reimburseme.api.dependencies import get_db_session, get_redis_client
from reimburseme.core.config import get_webhook_secret_list
from reimburseme.core.exceptions import DownstreamFailure, ValidationError
from reimburseme.core.observability import sentry_breadcrumb, sentry_metric_inc, sentry_set_tags
from reimburseme.models.tables import BatchSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

DEDUP_TTL_SECONDS = 7 * 24 * 3600


def dedup_key(event_id: str) -> str:
    return f"stripe:webhook:{event_id}"


def verify_event(payload: bytes, sig_header: str | None) -> Dict[str, Any]:
    """Verify ``payload`` against every configured secret; return the event as a dict.

    :raises DownstreamFailure: no webhook secret configured
    :raises ValidationError: signature matched none of the secrets
    """
    endpoint_secrets = get_webhook_secret_list()
    if not endpoint_secrets:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        raise DownstreamFailure("Webhook not configured")

    last_sig_error: Exception | None = None
    for secret in endpoint_secrets:
        try:
            event = stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=secret)
        except (stripe.SignatureVerificationError, ValueError) as e:
            last_sig_error = e
            continue
        return event if isinstance(event, dict) else event.to_dict()

    logger.warning("Invalid Stripe signature after trying %d secrets: %s", len(endpoint_secrets), last_sig_error)
    sentry_metric_inc("stripe.webhook.invalid_signature")
    raise ValidationError("Invalid signature")


async def mark_batch_paid(db: AsyncSession, data_object: Dict[str, Any]) -> bool:
    """Record the payment for a ``batch_export`` checkout; return False when nothing matched."""
    metadata = data_object.get("metadata") or {}
    session_id = metadata.get("batch_session_id")
    user_id = metadata.get("user_id")
    if not session_id or not user_id:
        logger.error("[stripe] batch_export checkout without batch_session_id/user_id metadata")
        return False
    try:
        owner_id = int(user_id)
    except (TypeError, ValueError):
        logger.error("[stripe] batch_export checkout with non-numeric user_id %r", user_id)
        return False

    batch = await db.scalar(
        select(BatchSession).where(BatchSession.session_id == session_id, BatchSession.owner_id == owner_id)
    )
    if batch is None:
        logger.error("[stripe] batch session %s for user %s not found", session_id, user_id)
        return False
    if batch.paid_at is not None:
        logger.info("[stripe] batch session %s already paid", session_id)
        return True
    batch.payment_id = data_object.get("payment_intent")
    batch.paid_at = dt.datetime.utcnow()
    await db.commit()
    logger.info("Batch session %s marked as paid for user %s", session_id, user_id)
    return True


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    redis_client: aioredis.Redis = Depends(get_redis_client),
):
    """Handle Stripe webhook events.

    Verifies the Stripe-Signature header, drops redelivered events by id
    and marks batch sessions paid on ``checkout.session.completed``.
    """
    payload = await request.body()
    event = verify_event(payload, request.headers.get("stripe-signature"))

    event_id = event.get("id")
    event_type: str = event.get("type", "")
    data_object: Dict[str, Any] = (event.get("data") or {}).get("object") or {}

    if event_id:
        try:
            fresh = await redis_client.set(dedup_key(event_id), "1", nx=True, ex=DEDUP_TTL_SECONDS)
        except RedisError as e:
            logger.warning("[stripe] redis dedup check failed: %s", e)
            fresh = True
        if not fresh:
            logger.info("[stripe] duplicate webhook event ignored id=%s", event_id)
            sentry_metric_inc("stripe.webhook.duplicate")
            return JSONResponse(status_code=200, content={"received": True, "duplicate": True, "id": event_id})

    sentry_metric_inc("stripe.webhook.received", tags={"event_type": event_type})
    sentry_set_tags({"stripe.event_type": event_type})
    if data_object.get("id"):
        sentry_breadcrumb(
            category="stripe",
            message=f"webhook:{event_type}",
            data={"object": data_object.get("object"), "id": data_object.get("id")},
        )

    handled = False
    if event_type == "checkout.session.completed" and (data_object.get("metadata") or {}).get("type") == "batch_export":
        try:
            handled = await mark_batch_paid(db, data_object)
        except Exception:
            # Let Stripe redeliver
            if event_id:
                await redis_client.delete(dedup_key(event_id))
            raise
    else:
        logger.debug("[stripe] ignoring event type=%s", event_type)

    return {"received": True, "handled": handled}
