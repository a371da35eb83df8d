"""
Completion coordinator - staff marks a pickup or delivery as done.

Item updates and the compare-and-set on the booking status share one
transaction: if the CAS matches zero rows another request already completed
the booking, everything is rolled back and no notification is sent.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...exceptions import Forbidden, InvalidState, NotFound, UpstreamFailure
from ...models import Booking
from ...services.audit import log_booking_event
from ...services.notification_service import CompletionNotifier
from ...utils.time import utcnow
from ..customers.repository import CustomerRepository, StaffRepository
from .repository import BookingRepository
from .states import ItemStatus, ServiceType, completable_statuses

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    booking: Optional[Booking]
    items_updated: int
    already_completed: bool = False


class CompletionCoordinator:
    """Completes a booking, moves its items, and notifies the customer once"""

    def __init__(
        self,
        db: AsyncSession,
        notifier: CompletionNotifier,
        clock: Callable[[], datetime] = utcnow,
        completable: Optional[Iterable[str]] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.clock = clock
        self.completable = tuple(completable) if completable is not None else completable_statuses()
        self.repo = BookingRepository()
        self.customers = CustomerRepository()
        self.staff = StaffRepository()

    async def complete(self, booking_id: str, staff_caller_id: str) -> CompletionResult:
        staff_record = await self.staff.get_staff(self.db, staff_caller_id)
        if staff_record is None:
            logger.warning(f"🚫 Complete-service denied: {staff_caller_id} is not staff")
            raise Forbidden("Forbidden: staff only")
        logger.info(f"Staff verified: {staff_caller_id} (role: {staff_record.role})")

        booking = await self.repo.get_booking_for_service(self.db, booking_id)
        if booking is None:
            raise NotFound("Action not found")

        if booking.status not in self.completable:
            expected = " or ".join(f"'{s}'" for s in self.completable)
            raise InvalidState(
                f"Cannot complete: action status is '{booking.status}' (expected {expected})"
            )

        now = self.clock()
        service_type = booking.service_type
        if service_type == ServiceType.DELIVERY.value:
            item_ids = list(booking.delivery_item_ids or [])
            target = ItemStatus.HOME.value
        else:
            item_ids = list(booking.pickup_item_ids or [])
            target = ItemStatus.STORED.value

        try:
            await self.repo.set_item_status(self.db, item_ids, target, booking.user_id, now)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"❌ Failed to update {service_type} items for {booking_id}: {e}")
            raise UpstreamFailure(f"Failed to update {service_type} items") from e

        try:
            completed = await self.repo.complete_if_status(self.db, booking_id, self.completable, now)
            if not completed:
                await self.db.rollback()
                logger.info(
                    f"Action {booking_id} not completable (already completed or status changed). "
                    f"Skipping email."
                )
                return CompletionResult(booking=None, items_updated=0, already_completed=True)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"❌ Failed to complete action {booking_id}: {e}")
            raise UpstreamFailure("Failed to complete action") from e

        booking = await self.repo.get_booking_for_service(self.db, booking_id)
        items_updated = len(item_ids)
        logger.info(
            f"✅ Service completed: {booking.service_type} for action {booking_id} "
            f"({items_updated} items updated)"
        )

        await log_booking_event(
            self.db,
            booking_id,
            "service_completed",
            {
                "service_type": booking.service_type,
                "items_updated": items_updated,
                "completed_by": staff_caller_id,
            },
        )

        await self._notify(booking, items_updated)
        return CompletionResult(booking=booking, items_updated=items_updated)

    async def _notify(self, booking: Booking, item_count: int) -> None:
        """Send the one completion email. Failures never undo the completion."""
        try:
            profile = await self.customers.get_profile_by_user_id(self.db, booking.user_id)
        except SQLAlchemyError as e:
            logger.error(f"❌ Profile lookup failed for user {booking.user_id}: {e}")
            return

        if profile is None or not profile.email:
            logger.info(f"No customer email found for user {booking.user_id}, skipping service email")
            return

        try:
            await self.notifier.send_service_completed(
                to=profile.email,
                service_type=booking.service_type,
                first_name=profile.first_name,
                item_count=item_count,
            )
        except Exception as e:
            logger.error(f"❌ Error sending completion email to {profile.email}: {e}")
