"""Booking service - Business logic for the booking lifecycle"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ...exceptions import Conflict, InvalidState, NotFound
from ...models import Booking, Item
from ...services.audit import log_booking_event
from ...utils.time import utcnow
from ..customers.repository import CustomerRepository
from .partitioner import ItemPartitioner, PartitionResult
from .repository import BookingRepository
from .states import (
    CUSTOMER_CANCELABLE_STATUSES,
    ITEM_SELECTABLE_STATUSES,
    TERMINAL_STATUSES,
    BookingStatus,
    ItemStatus,
    ServiceType,
    validate_transition,
)

logger = logging.getLogger(__name__)


@dataclass
class BookingDetail:
    booking: Booking
    items: list[Item]


class BookingService:
    """Service layer for booking lifecycle operations"""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.repo = BookingRepository()
        self.customers = CustomerRepository()

    # ========================================================================
    # SCHEDULING PROVIDER (service-level, never raises for missing data)
    # ========================================================================

    async def create_or_update_from_scheduling_event(
        self,
        invitee_email: Optional[str],
        event_uri: Optional[str],
        start: Optional[datetime],
        end: Optional[datetime],
        payload: Optional[dict] = None,
    ) -> Optional[Booking]:
        """
        Upsert a booking for a scheduled appointment, keyed on the event URI.

        Returns None when the event is incomplete or no customer matches the
        invitee email (orphan). Both outcomes are audited, not raised.
        """
        email = (invitee_email or "").strip().lower()

        if not email or not event_uri or not start or not end:
            logger.error(
                f"❌ Missing required fields in invitee.created payload "
                f"(email={bool(email)}, uri={bool(event_uri)}, start={bool(start)}, end={bool(end)})"
            )
            await log_booking_event(
                self.db,
                None,
                "calendly_webhook_error",
                {
                    "error": "Missing required fields",
                    "event_type": "invitee.created",
                    "payload": payload,
                },
            )
            return None

        owner = await self._resolve_owner(email, event_uri, start, end)
        if owner is None:
            return None
        user_id, address = owner

        booking = await self.repo.find_by_event_uri(self.db, event_uri)
        if booking is not None:
            return await self._refresh_schedule(booking, start, end, payload, email)

        booking = self.repo.create_booking(
            self.db,
            user_id,
            service_type=ServiceType.PICKUP.value,
            status=BookingStatus.PENDING_ITEMS.value,
            calendly_event_uri=event_uri,
            scheduled_start=start,
            scheduled_end=end,
            service_address=address,
            calendly_payload=payload,
            pickup_item_ids=[],
            delivery_item_ids=[],
        )
        try:
            await self.db.commit()
        except IntegrityError as e:
            # A concurrent delivery of the same event inserted first
            await self.db.rollback()
            booking = await self.repo.find_by_event_uri(self.db, event_uri)
            if booking is None:
                raise Conflict(f"Could not create booking for event {event_uri}") from e
            return await self._refresh_schedule(booking, start, end, payload, email)

        logger.info(f"✅ Booking created from Calendly: action_id={booking.id} user={user_id}")
        await log_booking_event(
            self.db,
            booking.id,
            "calendly_booking_created",
            {"source": "calendly_webhook", "event_uri": event_uri, "invitee_email": email},
        )
        return booking

    async def _resolve_owner(
        self, email: str, event_uri: str, start: datetime, end: datetime
    ) -> Optional[tuple[str, Optional[dict]]]:
        """Find (user_id, address snapshot) for an invitee, provisioning a profile if needed"""
        profile = await self.customers.get_profile_by_email(self.db, email)
        if profile is not None:
            logger.info(f"✓ Found profile for {email}: user_id={profile.user_id}")
            await log_booking_event(
                self.db,
                None,
                "calendly_profile_found",
                {"invitee_email": email, "user_id": profile.user_id},
            )
            return profile.user_id, profile.delivery_address

        customer = await self.customers.get_customer_by_email(self.db, email)
        if customer is None:
            logger.warning(f"⚠️ Orphan Calendly booking: no customer for {email}")
            await log_booking_event(
                self.db,
                None,
                "calendly_orphan_booking",
                {
                    "invitee_email": email,
                    "event_uri": event_uri,
                    "start_time": start.isoformat(),
                    "end_time": end.isoformat(),
                    "reason": "no_auth_user",
                },
            )
            return None

        # Customer exists but has not paid yet: minimal profile, no address
        user_id = customer.id
        self.customers.create_profile(
            self.db, user_id, email, subscription_status="inactive"
        )
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(f"❌ Failed to auto-create profile for {email}: {e}")
            await log_booking_event(
                self.db,
                None,
                "calendly_profile_create_failed",
                {"invitee_email": email, "user_id": user_id, "error": str(e.orig)},
            )
        else:
            logger.info(f"✓ Auto-created profile for {email}: user_id={user_id}")
            await log_booking_event(
                self.db,
                None,
                "calendly_profile_created",
                {
                    "invitee_email": email,
                    "user_id": user_id,
                    "source": "calendly_webhook_auto_create",
                },
            )
        return user_id, None

    async def _refresh_schedule(
        self,
        booking: Booking,
        start: datetime,
        end: datetime,
        payload: Optional[dict],
        email: str,
    ) -> Booking:
        """Re-delivery of a known event: only the schedule window and payload change"""
        booking.scheduled_start = start
        booking.scheduled_end = end
        booking.calendly_payload = payload
        booking.updated_at = self.clock()
        await self.db.commit()

        logger.info(f"🔁 Calendly event re-delivered for action_id={booking.id}, schedule refreshed")
        await log_booking_event(
            self.db,
            booking.id,
            "calendly_booking_updated",
            {
                "source": "calendly_webhook",
                "event_uri": booking.calendly_event_uri,
                "invitee_email": email,
            },
        )
        return booking

    async def cancel_from_scheduling_event(self, event_uri: Optional[str]) -> Optional[Booking]:
        """
        Cancel the booking for a Calendly event. The scheduling provider is
        authoritative, so this bypasses the transition table.
        """
        if not event_uri:
            logger.error("❌ Missing event URI in invitee.canceled payload")
            await log_booking_event(
                self.db,
                None,
                "calendly_webhook_error",
                {"error": "Missing event URI", "event_type": "invitee.canceled"},
            )
            return None

        booking = await self.repo.find_by_event_uri(self.db, event_uri)
        if booking is None:
            logger.warning(f"⚠️ No booking found for Calendly event: {event_uri}")
            await log_booking_event(
                self.db, None, "calendly_orphan_cancellation", {"event_uri": event_uri}
            )
            return None

        previous_status = booking.status
        if previous_status not in {s.value for s in TERMINAL_STATUSES}:
            await self._release_items(booking)

        booking.status = BookingStatus.CANCELED.value
        booking.updated_at = self.clock()
        await self.db.commit()

        logger.info(f"✅ Booking {booking.id} canceled by Calendly (was {previous_status})")
        await log_booking_event(
            self.db,
            booking.id,
            "calendly_booking_canceled",
            {
                "source": "calendly_webhook",
                "event_uri": event_uri,
                "previous_status": previous_status,
            },
        )
        return booking

    # ========================================================================
    # CUSTOMER PORTAL (owner-scoped)
    # ========================================================================

    async def _get_owned(self, booking_id: str, caller_id: str) -> Booking:
        booking = await self.repo.get_owned_booking(self.db, booking_id, caller_id)
        # Ownership is enforced by the query; re-checked here as well
        if booking is None or booking.user_id != caller_id:
            raise NotFound("Booking not found")
        return booking

    async def select_items(
        self, booking_id: str, caller_id: str, candidate_ids: list[str]
    ) -> tuple[Booking, PartitionResult]:
        """Assign items to a booking; always lands in pending_confirmation"""
        booking = await self._get_owned(booking_id, caller_id)
        booking_id = booking.id
        previous_status = booking.status
        selectable = {s.value for s in ITEM_SELECTABLE_STATUSES}

        if previous_status not in selectable:
            raise InvalidState(
                f"Cannot modify items: booking status is '{previous_status}' "
                f"(expected 'pending_items' or 'pending_confirmation')"
            )

        target = BookingStatus.PENDING_CONFIRMATION.value
        validate_transition(previous_status, target, item_edit=True)

        partitioner = ItemPartitioner(self.db, self.clock)
        result = await partitioner.partition(booking, candidate_ids)
        try:
            await partitioner.apply(booking, result)
        except Conflict:
            await self.db.rollback()
            raise

        if not await self.repo.update_if_status(
            self.db, booking_id, selectable, status=target, updated_at=self.clock()
        ):
            await self.db.rollback()
            logger.warning(f"⚠️ Booking {booking_id} changed status while items were being updated")
            raise Conflict("Booking was modified by another request, please retry")
        booking.status = target
        await self.db.commit()

        logger.info(
            f"✅ Items updated for booking {booking.id}: "
            f"{len(result.pickup_ids)} pickup, {len(result.delivery_ids)} delivery"
        )
        await log_booking_event(
            self.db,
            booking.id,
            "items_updated",
            {
                "pickup_count": len(result.pickup_ids),
                "delivery_count": len(result.delivery_ids),
                "total_items": len(candidate_ids),
                "added_count": len(result.added_ids),
                "removed_pickup_count": len(result.removed_pickup_ids),
                "removed_delivery_count": len(result.removed_delivery_ids),
                "previous_status": previous_status,
                "new_status": target,
            },
        )
        return booking, result

    async def customer_cancel(self, booking_id: str, caller_id: str) -> Booking:
        """Cancel a pending booking and release its items. Idempotent."""
        booking = await self._get_owned(booking_id, caller_id)
        previous_status = booking.status

        if previous_status == BookingStatus.CANCELED.value:
            logger.info(f"Booking {booking.id} already canceled")
            return booking

        if previous_status not in {s.value for s in CUSTOMER_CANCELABLE_STATUSES}:
            raise InvalidState(
                "Cannot cancel booking",
                reason=(
                    f"Booking status is '{previous_status}'. Cancellation is only allowed "
                    f"for bookings in pending states. Please contact support."
                ),
                status_code=409,
            )

        validate_transition(previous_status, BookingStatus.CANCELED.value)
        booking_id = booking.id
        pickup_count, delivery_count = await self._release_items(booking)
        now = self.clock()
        if not await self.repo.update_if_status(
            self.db,
            booking_id,
            [s.value for s in CUSTOMER_CANCELABLE_STATUSES],
            status=BookingStatus.CANCELED.value,
            updated_at=now,
        ):
            # Status changed after our read: undo the item release and report the new state
            await self.db.rollback()
            current = await self.repo.get_owned_booking(self.db, booking_id, caller_id)
            if current is not None and current.status == BookingStatus.CANCELED.value:
                logger.info(f"Booking {booking_id} was canceled concurrently")
                return current
            current_status = current.status if current is not None else "unknown"
            raise InvalidState(
                "Cannot cancel booking",
                reason=(
                    f"Booking status is '{current_status}'. Cancellation is only allowed "
                    f"for bookings in pending states. Please contact support."
                ),
                status_code=409,
            )
        booking.status = BookingStatus.CANCELED.value
        booking.updated_at = now
        await self.db.commit()

        logger.info(f"✅ Booking {booking.id} canceled by customer {caller_id}")
        await log_booking_event(
            self.db,
            booking.id,
            "portal_booking_canceled",
            {
                "previous_status": previous_status,
                "pickup_items_reverted": pickup_count,
                "delivery_items_reverted": delivery_count,
                "canceled_by": caller_id,
            },
        )
        return booking

    async def _release_items(self, booking: Booking) -> tuple[int, int]:
        """Stage pickup items back to home and delivery items back to stored"""
        now = self.clock()
        pickup_ids = list(booking.pickup_item_ids or [])
        delivery_ids = list(booking.delivery_item_ids or [])
        await self.repo.set_item_status(
            self.db, pickup_ids, ItemStatus.HOME.value, booking.user_id, now
        )
        await self.repo.set_item_status(
            self.db, delivery_ids, ItemStatus.STORED.value, booking.user_id, now
        )
        return len(pickup_ids), len(delivery_ids)

    async def list_bookings(self, caller_id: str) -> list[Booking]:
        return await self.repo.list_owned_bookings(self.db, caller_id)

    async def get_booking(self, booking_id: str, caller_id: str) -> BookingDetail:
        """Booking with the owner's items it references"""
        booking = await self._get_owned(booking_id, caller_id)
        item_ids = list(booking.pickup_item_ids or []) + list(booking.delivery_item_ids or [])
        items = await self.repo.get_owned_items(self.db, item_ids, caller_id)
        return BookingDetail(booking=booking, items=items)

    # ========================================================================
    # STAFF
    # ========================================================================

    async def confirm(self, booking_id: str) -> Booking:
        """Staff confirmation: pending_confirmation -> confirmed"""
        booking = await self.repo.get_booking_for_service(self.db, booking_id)
        if booking is None:
            raise NotFound("Action not found")

        validate_transition(booking.status, BookingStatus.CONFIRMED.value)
        booking_id = booking.id
        previous_status = booking.status
        now = self.clock()
        if not await self.repo.update_if_status(
            self.db, booking_id, [previous_status], status=BookingStatus.CONFIRMED.value, updated_at=now
        ):
            await self.db.rollback()
            logger.warning(f"⚠️ Booking {booking_id} left '{previous_status}' before it was confirmed")
            raise Conflict("Booking was modified by another request, please retry")
        booking.status = BookingStatus.CONFIRMED.value
        booking.updated_at = now
        await self.db.commit()

        logger.info(f"✅ Booking {booking.id} confirmed")
        await log_booking_event(
            self.db,
            booking.id,
            "booking_confirmed",
            {"previous_status": previous_status},
        )
        return booking
