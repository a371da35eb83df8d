"""Booking audit log (booking_events). Writes are best effort."""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import BookingEvent

logger = logging.getLogger(__name__)


async def log_booking_event(
    db: AsyncSession,
    action_id: Optional[str],
    event_type: str,
    metadata: Optional[dict] = None,
) -> None:
    """
    Append an audit event.

    The event is written through its own session on the caller's bind, so a
    failure here never rolls back or expires the caller's objects. Failures
    are logged, never raised.
    """
    try:
        async with AsyncSession(bind=db.bind, expire_on_commit=False) as audit_db:
            audit_db.add(
                BookingEvent(action_id=action_id, event_type=event_type, event_metadata=metadata or {})
            )
            await audit_db.commit()
    except SQLAlchemyError as e:
        logger.error(f"❌ Failed to log booking event {event_type} (action={action_id}): {e}")
