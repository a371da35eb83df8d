"""Webhook service - idempotent ingestion of verified provider events"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ... import config
from ..billing.service import PaymentEventProcessor
from ..bookings.service import BookingService
from .ledger import IdempotencyLedger
from .schemas import CalendlyWebhookEvent, StripeEvent

logger = logging.getLogger(__name__)

RECORD_AFTER = "record_after"
INSERT_FIRST = "insert_first"


class PaymentWebhookHandler:
    """
    Applies a Stripe event exactly once.

    record_after: check the ledger, process, then record. A crash mid-way
    leaves no record, so the provider's retry is processed again.
    insert_first: claim the event id before processing. Concurrent duplicates
    are rejected, but a crash after the claim is never retried.
    """

    def __init__(
        self,
        db: AsyncSession,
        processor: Optional[PaymentEventProcessor] = None,
        strategy: Optional[str] = None,
    ):
        self.db = db
        self.ledger = IdempotencyLedger(db)
        self.processor = processor or PaymentEventProcessor(db)
        self.strategy = strategy or config.PAYMENT_WEBHOOK_IDEMPOTENCY

    async def handle(self, event: StripeEvent, raw_payload: Optional[dict] = None) -> dict:
        if self.strategy == INSERT_FIRST:
            return await self._handle_insert_first(event, raw_payload)
        return await self._handle_record_after(event, raw_payload)

    async def _handle_record_after(self, event: StripeEvent, raw_payload: Optional[dict]) -> dict:
        if await self.ledger.has_been_processed(event.id):
            logger.info(f"🔁 Duplicate Stripe event {event.id}, skipping")
            return {"ok": True, "duplicate": True}

        await self.processor.process(event.type, event.data.object)

        if not await self.ledger.record_processed(event.id, event.type, raw_payload):
            # A concurrent delivery finished first; our writes were idempotent upserts
            logger.info(f"🔁 Stripe event {event.id} was recorded concurrently")
        logger.info(f"✅ Stripe event {event.id} ({event.type}) processed")
        return {"ok": True}

    async def _handle_insert_first(self, event: StripeEvent, raw_payload: Optional[dict]) -> dict:
        if not await self.ledger.claim(event.id, event.type, raw_payload):
            logger.info(f"🔁 Duplicate Stripe event {event.id}, skipping")
            return {"ok": True, "duplicate": True}

        try:
            await self.processor.process(event.type, event.data.object)
        except Exception:
            logger.error(
                f"❌ Stripe event {event.id} failed after being claimed; needs manual reconciliation"
            )
            raise
        logger.info(f"✅ Stripe event {event.id} ({event.type}) processed")
        return {"ok": True}


class SchedulingWebhookHandler:
    """Routes Calendly invitee events to the booking lifecycle"""

    def __init__(self, db: AsyncSession, bookings: Optional[BookingService] = None):
        self.db = db
        self.bookings = bookings or BookingService(db)

    async def handle(self, event: CalendlyWebhookEvent) -> dict:
        invitee = event.invitee()
        scheduled = invitee.scheduled_event
        event_uri = scheduled.uri if scheduled else None

        if event.event == "invitee.created":
            logger.info("→ Routing to invitee.created handler")
            await self.bookings.create_or_update_from_scheduling_event(
                invitee.email,
                event_uri,
                scheduled.start_time if scheduled else None,
                scheduled.end_time if scheduled else None,
                event.payload,
            )
        elif event.event == "invitee.canceled":
            logger.info("→ Routing to invitee.canceled handler")
            await self.bookings.cancel_from_scheduling_event(event_uri)
        else:
            logger.info(f"⚠️ Unhandled Calendly event type: {event.event}")

        return {"ok": True}
