"""Booking repository - Database operations for bookings (actions) and items

Owner-scoped methods (``get_owned_*``, ``set_item_status(..., owner_id)``) are
the primary isolation boundary: every customer-facing read and write goes
through them. Elevated reads used by webhooks and staff are named separately.
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import Booking, Item


class BookingRepository:
    """Repository for booking and item database operations"""

    # ------------------------------------------------------------------
    # Owner-scoped
    # ------------------------------------------------------------------

    @staticmethod
    async def get_owned_booking(
        db: AsyncSession, booking_id: str, owner_id: str
    ) -> Optional[Booking]:
        """Get a booking only if it belongs to owner_id"""
        result = await db.execute(
            select(Booking)
            .where(Booking.id == booking_id, Booking.user_id == owner_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_owned_bookings(db: AsyncSession, owner_id: str) -> list[Booking]:
        """Get all bookings for an owner, soonest first (unscheduled last)"""
        result = await db.execute(
            select(Booking)
            .where(Booking.user_id == owner_id)
            .order_by(Booking.scheduled_start.is_(None), Booking.scheduled_start.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_owned_items(
        db: AsyncSession, item_ids: list[str], owner_id: str
    ) -> list[Item]:
        """Fresh read of items by id, restricted to owner_id"""
        if not item_ids:
            return []
        result = await db.execute(
            select(Item)
            .where(Item.id.in_(item_ids), Item.user_id == owner_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def set_item_status(
        db: AsyncSession,
        item_ids: list[str],
        status: str,
        owner_id: str,
        now: datetime,
    ) -> int:
        """Bulk update item status within one owner's items. Does not commit."""
        if not item_ids:
            return 0
        result = await db.execute(
            update(Item)
            .where(Item.id.in_(item_ids), Item.user_id == owner_id)
            .values(status=status, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def claim_items(
        db: AsyncSession,
        item_ids: list[str],
        from_status: str,
        owner_id: str,
        now: datetime,
    ) -> int:
        """
        Move items to scheduled only if they are still in ``from_status``.

        Returns the number of items claimed; fewer than ``len(item_ids)`` means
        another booking got there first. Does not commit.
        """
        if not item_ids:
            return 0
        result = await db.execute(
            update(Item)
            .where(Item.id.in_(item_ids), Item.user_id == owner_id, Item.status == from_status)
            .values(status="scheduled", updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ------------------------------------------------------------------
    # Elevated (webhook / staff paths)
    # ------------------------------------------------------------------

    @staticmethod
    async def get_booking_for_service(db: AsyncSession, booking_id: str) -> Optional[Booking]:
        """Get any booking by id (staff and webhook paths only)"""
        result = await db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def find_by_event_uri(db: AsyncSession, event_uri: str) -> Optional[Booking]:
        """Get a booking by its Calendly event URI"""
        result = await db.execute(
            select(Booking)
            .where(Booking.calendly_event_uri == event_uri)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def create_booking(db: AsyncSession, user_id: str, **booking_data) -> Booking:
        """Stage a new booking. Caller commits."""
        booking = Booking(user_id=user_id, **booking_data)
        db.add(booking)
        return booking

    @staticmethod
    async def update_if_status(
        db: AsyncSession, booking_id: str, allowed: Iterable[str], **values
    ) -> bool:
        """
        Compare-and-set: apply ``values`` only if status is still in ``allowed``.

        Returns False when zero rows matched (someone else changed it first).
        Does not commit.
        """
        result = await db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(list(allowed)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def complete_if_status(
        db: AsyncSession, booking_id: str, allowed: Iterable[str], now: datetime
    ) -> bool:
        """Mark completed only if status is still in ``allowed``"""
        return await BookingRepository.update_if_status(
            db, booking_id, allowed, status="completed", completed_at=now, updated_at=now
        )
