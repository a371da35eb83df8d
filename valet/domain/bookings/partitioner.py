"""
Item partitioner - splits a customer's item selection into pickup and delivery sets.

``partition_items`` is the pure computation; ``ItemPartitioner`` reads item
status fresh from the store and stages the resulting changes on the session.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ...exceptions import Conflict
from ...models import Booking
from ...utils.time import utcnow
from .repository import BookingRepository
from .states import ItemStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartitionResult:
    pickup_ids: list[str]
    delivery_ids: list[str]
    added_ids: list[str]
    removed_pickup_ids: list[str]
    removed_delivery_ids: list[str]
    skipped_ids: list[str]


def _dedupe(ids: Iterable[str]) -> list[str]:
    seen = set()
    out = []
    for item_id in ids:
        if item_id not in seen:
            seen.add(item_id)
            out.append(item_id)
    return out


def partition_items(
    item_statuses: dict[str, str],
    candidate_ids: Iterable[str],
    prev_pickup: Optional[Iterable[str]] = None,
    prev_delivery: Optional[Iterable[str]] = None,
) -> PartitionResult:
    """
    Compute the new pickup/delivery assignment for a booking.

    Args:
        item_statuses: current status of each candidate item the owner holds
            (ids missing here are not the owner's, or do not exist, and are ignored)
        candidate_ids: item ids the customer submitted, in submission order
        prev_pickup: the booking's current pickup_item_ids
        prev_delivery: the booking's current delivery_item_ids

    home goes to pickup and stored goes to delivery. A scheduled item keeps the
    direction it already had on this booking; if it is in neither previous set
    it is skipped.
    """
    prev_pickup_set = set(prev_pickup or [])
    prev_delivery_set = set(prev_delivery or [])

    pickup: list[str] = []
    delivery: list[str] = []
    skipped: list[str] = []

    for item_id in _dedupe(candidate_ids):
        status = item_statuses.get(item_id)
        if status == ItemStatus.HOME.value:
            pickup.append(item_id)
        elif status == ItemStatus.STORED.value:
            delivery.append(item_id)
        elif status == ItemStatus.SCHEDULED.value:
            if item_id in prev_pickup_set:
                pickup.append(item_id)
            elif item_id in prev_delivery_set:
                delivery.append(item_id)
            else:
                skipped.append(item_id)
        # anything else (unknown status, not owned) is not selectable

    previous = prev_pickup_set | prev_delivery_set
    pickup_set = set(pickup)
    delivery_set = set(delivery)

    return PartitionResult(
        pickup_ids=pickup,
        delivery_ids=delivery,
        added_ids=[i for i in pickup + delivery if i not in previous],
        removed_pickup_ids=sorted(prev_pickup_set - pickup_set),
        removed_delivery_ids=sorted(prev_delivery_set - delivery_set),
        skipped_ids=skipped,
    )


class ItemPartitioner:
    """Reads candidate items fresh and applies a PartitionResult to a booking"""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.repo = BookingRepository()

    async def partition(self, booking: Booking, candidate_ids: list[str]) -> PartitionResult:
        items = await self.repo.get_owned_items(self.db, _dedupe(candidate_ids), booking.user_id)
        result = partition_items(
            {item.id: item.status for item in items},
            candidate_ids,
            booking.pickup_item_ids,
            booking.delivery_item_ids,
        )
        if result.skipped_ids:
            logger.warning(
                f"⚠️ Booking {booking.id}: skipped {len(result.skipped_ids)} scheduled item(s) "
                f"not claimed by this booking: {result.skipped_ids}"
            )
        return result

    async def apply(self, booking: Booking, result: PartitionResult) -> None:
        """
        Stage item status changes and the new sets on the booking. Caller commits.

        Raises:
            Conflict: an added item left home/stored after it was read; the
                caller must roll back
        """
        now = self.clock()
        owner_id = booking.user_id
        added = set(result.added_ids)
        added_pickup = [i for i in result.pickup_ids if i in added]
        added_delivery = [i for i in result.delivery_ids if i in added]

        claimed = await self.repo.claim_items(
            self.db, added_pickup, ItemStatus.HOME.value, owner_id, now
        )
        claimed += await self.repo.claim_items(
            self.db, added_delivery, ItemStatus.STORED.value, owner_id, now
        )
        if claimed != len(added_pickup) + len(added_delivery):
            logger.warning(
                f"⚠️ Booking {booking.id}: claimed {claimed} of "
                f"{len(added_pickup) + len(added_delivery)} item(s), another booking got there first"
            )
            raise Conflict("One or more items are already scheduled on another booking")

        await self.repo.set_item_status(
            self.db, result.removed_pickup_ids, ItemStatus.HOME.value, owner_id, now
        )
        await self.repo.set_item_status(
            self.db, result.removed_delivery_ids, ItemStatus.STORED.value, owner_id, now
        )

        booking.pickup_item_ids = list(result.pickup_ids)
        booking.delivery_item_ids = list(result.delivery_ids)
        booking.updated_at = now
