"""Booking lifecycle - statuses and the allowed transition table"""

from enum import Enum

from ... import config
from ...exceptions import InvalidTransition


class BookingStatus(str, Enum):
    PENDING_ITEMS = "pending_items"
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"


class ItemStatus(str, Enum):
    HOME = "home"
    SCHEDULED = "scheduled"
    STORED = "stored"


class ServiceType(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


# from -> allowed to
ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING_ITEMS: frozenset(
        {BookingStatus.PENDING_CONFIRMATION, BookingStatus.CANCELED}
    ),
    BookingStatus.PENDING_CONFIRMATION: frozenset(
        {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELED,
            BookingStatus.PENDING_CONFIRMATION,
        }
    ),
    # in_progress is reserved; completion currently goes straight from confirmed
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, BookingStatus.CANCELED}
    ),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELED: frozenset(),
}

TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELED})

# Customers may edit items on, or cancel, bookings in these statuses
ITEM_SELECTABLE_STATUSES = frozenset(
    {BookingStatus.PENDING_ITEMS, BookingStatus.PENDING_CONFIRMATION}
)
CUSTOMER_CANCELABLE_STATUSES = ITEM_SELECTABLE_STATUSES


def is_valid_transition(from_status: str, to_status: str, *, item_edit: bool = False) -> bool:
    """
    Check a status change against the transition table.

    The pending_confirmation self-loop is only legal for item-selection edits.
    Unknown statuses are never valid.
    """
    try:
        current = BookingStatus(from_status)
        target = BookingStatus(to_status)
    except ValueError:
        return False

    if current == target and not item_edit:
        return False
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(from_status: str, to_status: str, *, item_edit: bool = False) -> None:
    """Raise InvalidTransition naming the pair if the change is not allowed"""
    if not is_valid_transition(from_status, to_status, item_edit=item_edit):
        raise InvalidTransition(_value(from_status), _value(to_status))


def _value(status) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def completable_statuses() -> tuple[str, ...]:
    """Statuses staff may complete from (configured, defaults to confirmed/pending_confirmation)"""
    return tuple(config.COMPLETABLE_STATUSES)
