"""Booking router - customer portal and staff endpoints"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth import get_current_customer, get_current_staff
from ...database import get_db
from ...models import Customer
from ...security_middleware import require_allowed_origin
from ...services.notification_service import CompletionNotifier, ResendCompletionNotifier
from .completion import CompletionCoordinator
from .schemas import (
    ActionIdRequest,
    ActionResponse,
    BookingDetail,
    BookingIdRequest,
    BookingSummary,
    ItemCounts,
    ItemSummary,
    SelectItemsRequest,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])
staff_router = APIRouter(prefix="/staff", tags=["Staff"])


def get_booking_service(db: AsyncSession = Depends(get_db)) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db)


def get_notifier() -> CompletionNotifier:
    """Dependency injection for the completion notifier"""
    return ResendCompletionNotifier()


def get_completion_coordinator(
    db: AsyncSession = Depends(get_db),
    notifier: CompletionNotifier = Depends(get_notifier),
) -> CompletionCoordinator:
    """Dependency injection for CompletionCoordinator"""
    return CompletionCoordinator(db, notifier)


# ============================================================================
# CUSTOMER PORTAL
# ============================================================================


@router.api_route("/list", methods=["GET", "POST"])
async def list_bookings(
    current_customer: Customer = Depends(get_current_customer),
    service: BookingService = Depends(get_booking_service),
):
    """List the caller's bookings, soonest first"""
    bookings = await service.list_bookings(current_customer.id)
    logger.info(f"Returning {len(bookings)} bookings for user {current_customer.id}")
    return {
        "bookings": [BookingSummary.model_validate(b).model_dump(mode="json") for b in bookings]
    }


@router.post("/get")
async def get_booking(
    data: BookingIdRequest,
    current_customer: Customer = Depends(get_current_customer),
    service: BookingService = Depends(get_booking_service),
):
    """Get one booking with its items"""
    detail = await service.get_booking(data.booking_id, current_customer.id)
    booking = detail.booking
    pickup_count = len(booking.pickup_item_ids or [])
    delivery_count = len(booking.delivery_item_ids or [])

    summary = BookingSummary.model_validate(booking)
    response = BookingDetail(
        **summary.model_dump(),
        service_address=booking.service_address,
        items=[ItemSummary.model_validate(i) for i in detail.items],
        item_counts=ItemCounts(
            pickup=pickup_count,
            delivery=delivery_count,
            total=pickup_count + delivery_count,
        ),
    )
    return {"booking": response.model_dump(mode="json")}


@router.post("/items", dependencies=[Depends(require_allowed_origin)])
async def update_booking_items(
    data: SelectItemsRequest,
    current_customer: Customer = Depends(get_current_customer),
    service: BookingService = Depends(get_booking_service),
):
    """Select items for pickup/delivery on a pending booking"""
    booking, result = await service.select_items(
        data.booking_id, current_customer.id, data.selected_item_ids
    )
    return {
        "ok": True,
        "booking": ActionResponse.model_validate(booking).model_dump(mode="json"),
        "summary": {
            "pickup_items": len(result.pickup_ids),
            "delivery_items": len(result.delivery_ids),
        },
    }


@router.post("/cancel", dependencies=[Depends(require_allowed_origin)])
async def cancel_booking(
    data: BookingIdRequest,
    current_customer: Customer = Depends(get_current_customer),
    service: BookingService = Depends(get_booking_service),
):
    """Cancel a pending booking (idempotent)"""
    await service.customer_cancel(data.booking_id, current_customer.id)
    return {"ok": True, "status": "canceled"}


# ============================================================================
# STAFF
# ============================================================================


@staff_router.post("/complete-service", dependencies=[Depends(require_allowed_origin)])
async def complete_service(
    data: ActionIdRequest,
    current_customer: Customer = Depends(get_current_customer),
    coordinator: CompletionCoordinator = Depends(get_completion_coordinator),
):
    """Mark a pickup or delivery as completed"""
    logger.info(f"Complete-service request from user: {current_customer.id}")
    result = await coordinator.complete(data.action_id, current_customer.id)

    if result.already_completed:
        return {
            "ok": True,
            "already_completed": True,
            "message": "Action already completed or not in a completable state",
        }

    return {
        "ok": True,
        "action": ActionResponse.model_validate(result.booking).model_dump(mode="json"),
        "message": f"Service completed: {result.booking.service_type}",
        "items_updated": result.items_updated,
    }


@staff_router.post("/confirm-booking", dependencies=[Depends(require_allowed_origin)])
async def confirm_booking(
    data: ActionIdRequest,
    _staff: Customer = Depends(get_current_staff),
    service: BookingService = Depends(get_booking_service),
):
    """Confirm a booking whose items have been selected"""
    booking = await service.confirm(data.action_id)
    return {"ok": True, "action": ActionResponse.model_validate(booking).model_dump(mode="json")}
