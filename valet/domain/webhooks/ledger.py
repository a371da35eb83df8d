"""
Idempotency ledger for inbound webhook events (webhook_events table).

Reads fail open: if the ledger itself cannot be queried we would rather process
a payment event twice (downstream writes are upserts) than drop it. Duplicate
inserts are reported, not raised.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import WebhookEvent

logger = logging.getLogger(__name__)


class IdempotencyLedger:
    """Records processed external event ids exactly once"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def has_been_processed(self, event_id: str) -> bool:
        try:
            result = await self.db.execute(
                select(WebhookEvent.id).where(WebhookEvent.event_id == event_id)
            )
            return result.first() is not None
        except SQLAlchemyError as e:
            logger.error(f"❌ Idempotency check failed for {event_id}, processing anyway: {e}")
            await self.db.rollback()
            return False

    async def record_processed(
        self, event_id: str, event_type: str, payload: Optional[dict] = None
    ) -> bool:
        """
        Insert the ledger row.

        Returns True if this call recorded the event, False if it was already
        recorded (unique constraint on event_id).
        """
        self.db.add(WebhookEvent(event_id=event_id, event_type=event_type, payload=payload))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"🔁 Event {event_id} already recorded")
            return False
        return True

    async def claim(self, event_id: str, event_type: str, payload: Optional[dict] = None) -> bool:
        """Insert-first ordering: True means this caller owns processing of the event"""
        return await self.record_processed(event_id, event_type, payload)
