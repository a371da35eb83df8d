"""Webhook router - Calendly and Stripe endpoints

Both endpoints verify the signature over the raw body before parsing it.
4xx means "do not retry, the request is wrong"; 5xx asks the provider to retry.
"""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ... import config
from ...database import get_db
from ...rate_limiter import webhook_rate_limiter
from ...webhook_security import (
    SignatureFailure,
    WebhookSignatureError,
    verify_calendly_webhook,
    verify_stripe_webhook,
)
from .schemas import CalendlyWebhookEvent, StripeEvent
from .service import PaymentWebhookHandler, SchedulingWebhookHandler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _parse_json(raw_body: bytes):
    try:
        return json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


@router.post("/calendly")
async def calendly_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(webhook_rate_limiter),
):
    """Calendly invitee.created / invitee.canceled"""
    try:
        raw_body = await verify_calendly_webhook(request, config.CALENDLY_WEBHOOK_SIGNING_KEY)
    except WebhookSignatureError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={"error": "Unauthorized", "reason": e.reason.value},
        )

    body = _parse_json(raw_body)
    if not isinstance(body, dict):
        logger.error(f"❌ Failed to parse Calendly webhook body: {raw_body[:500]!r}")
        return JSONResponse(status_code=400, content={"error": "Invalid JSON"})

    try:
        event = CalendlyWebhookEvent.model_validate(body)
        handler = SchedulingWebhookHandler(db)
        return await handler.handle(event)
    except ValidationError as e:
        logger.error(f"❌ Invalid Calendly event payload: {e}")
        return JSONResponse(status_code=400, content={"error": "Invalid event payload"})
    except Exception:
        logger.exception("❌ Calendly webhook processing error")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(webhook_rate_limiter),
):
    """Stripe checkout, subscription and invoice events"""
    try:
        raw_body = await verify_stripe_webhook(request, config.STRIPE_WEBHOOK_SECRET)
    except WebhookSignatureError as e:
        # Stripe's contract: 400 for anything wrong with the request itself
        status_code = 500 if e.reason == SignatureFailure.MISCONFIGURED_SECRET else 400
        return JSONResponse(
            status_code=status_code,
            content={"error": f"Webhook Error: {e.reason.value}", "reason": e.reason.value},
        )

    body = _parse_json(raw_body)
    if not isinstance(body, dict):
        logger.error("❌ Failed to parse Stripe webhook body")
        return JSONResponse(status_code=400, content={"error": "Invalid JSON"})

    try:
        event = StripeEvent.model_validate(body)
    except ValidationError as e:
        logger.error(f"❌ Invalid Stripe event envelope: {e}")
        return JSONResponse(status_code=400, content={"error": "Invalid event payload"})

    try:
        handler = PaymentWebhookHandler(db)
        return await handler.handle(event, raw_payload=body)
    except Exception:
        logger.exception(f"❌ Stripe webhook processing error for event {event.id}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
