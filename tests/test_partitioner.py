"""
Tests for the item partitioner.
"""

import pytest
from sqlalchemy import select

from valet.domain.bookings.partitioner import ItemPartitioner, partition_items
from valet.domain.bookings.repository import BookingRepository
from valet.exceptions import Conflict
from valet.models import Booking, Item

from .conftest import make_booking, make_customer, make_item, reload


class TestPartitionItems:
    def test_home_goes_to_pickup_and_stored_to_delivery(self):
        result = partition_items(
            {"a": "home", "b": "stored", "c": "home"},
            ["a", "b", "c"],
        )

        assert result.pickup_ids == ["a", "c"]
        assert result.delivery_ids == ["b"]
        assert result.added_ids == ["a", "c", "b"]
        assert result.removed_pickup_ids == []
        assert result.removed_delivery_ids == []

    def test_unknown_or_foreign_ids_are_ignored(self):
        result = partition_items({"a": "home"}, ["a", "not-mine", "missing"])

        assert result.pickup_ids == ["a"]
        assert result.delivery_ids == []
        assert result.skipped_ids == []

    def test_duplicates_collapse_preserving_order(self):
        result = partition_items({"a": "home", "b": "home"}, ["b", "a", "b", "a"])

        assert result.pickup_ids == ["b", "a"]

    def test_scheduled_item_keeps_its_direction(self):
        result = partition_items(
            {"a": "scheduled", "b": "scheduled"},
            ["a", "b"],
            prev_pickup=["a"],
            prev_delivery=["b"],
        )

        assert result.pickup_ids == ["a"]
        assert result.delivery_ids == ["b"]
        assert result.added_ids == []

    def test_scheduled_item_claimed_elsewhere_is_skipped(self):
        result = partition_items({"a": "scheduled", "b": "home"}, ["a", "b"])

        assert result.pickup_ids == ["b"]
        assert result.delivery_ids == []
        assert result.skipped_ids == ["a"]

    def test_removed_items_reported_by_direction(self):
        result = partition_items(
            {"a": "scheduled", "c": "home"},
            ["a", "c"],
            prev_pickup=["a", "z", "y"],
            prev_delivery=["d"],
        )

        assert result.pickup_ids == ["a", "c"]
        assert result.added_ids == ["c"]
        assert result.removed_pickup_ids == ["y", "z"]
        assert result.removed_delivery_ids == ["d"]

    def test_reapplying_same_selection_is_a_no_op(self):
        first = partition_items({"a": "home", "b": "stored"}, ["a", "b"])
        second = partition_items(
            {"a": "scheduled", "b": "scheduled"},
            ["a", "b"],
            prev_pickup=first.pickup_ids,
            prev_delivery=first.delivery_ids,
        )

        assert second.pickup_ids == first.pickup_ids
        assert second.delivery_ids == first.delivery_ids
        assert second.added_ids == []
        assert second.removed_pickup_ids == []
        assert second.removed_delivery_ids == []

    def test_empty_selection_releases_everything(self):
        result = partition_items({}, [], prev_pickup=["a"], prev_delivery=["b"])

        assert result.pickup_ids == []
        assert result.delivery_ids == []
        assert result.removed_pickup_ids == ["a"]
        assert result.removed_delivery_ids == ["b"]


class TestItemPartitioner:
    async def test_apply_updates_items_and_booking(self, db, clock):
        owner = await make_customer(db)
        home = await make_item(db, owner, "home")
        stored = await make_item(db, owner, "stored")
        dropped = await make_item(db, owner, "scheduled")
        booking = await make_booking(db, owner, "pending_confirmation", pickup=[dropped.id])

        partitioner = ItemPartitioner(db, clock)
        result = await partitioner.partition(booking, [home.id, stored.id])
        await partitioner.apply(booking, result)
        await db.commit()

        rows = await db.execute(
            select(Item.id, Item.status).where(Item.id.in_([home.id, stored.id, dropped.id]))
        )
        statuses = dict(rows.all())
        assert statuses == {home.id: "scheduled", stored.id: "scheduled", dropped.id: "home"}
        assert booking.pickup_item_ids == [home.id]
        assert booking.delivery_item_ids == [stored.id]

    async def test_other_owners_items_are_untouched(self, db, clock):
        owner = await make_customer(db)
        other = await make_customer(db, "other@example.com")
        theirs = await make_item(db, other, "home")
        booking = await make_booking(db, owner)

        partitioner = ItemPartitioner(db, clock)
        result = await partitioner.partition(booking, [theirs.id])
        await partitioner.apply(booking, result)
        await db.commit()

        status = await db.scalar(select(Item.status).where(Item.id == theirs.id))
        assert status == "home"
        assert booking.pickup_item_ids == []

    async def test_item_read_as_home_by_two_sessions_is_claimed_once(
        self, db, session_factory, clock
    ):
        owner = await make_customer(db)
        item = await make_item(db, owner, "home")
        first = await make_booking(db, owner)
        second = await make_booking(db, owner)
        item_id, first_id, second_id = item.id, first.id, second.id

        async with session_factory() as other_db:
            other_booking = await BookingRepository.get_booking_for_service(other_db, second_id)

            partitioner = ItemPartitioner(db, clock)
            other_partitioner = ItemPartitioner(other_db, clock)
            result = await partitioner.partition(first, [item_id])
            other_result = await other_partitioner.partition(other_booking, [item_id])
            assert result.pickup_ids == other_result.pickup_ids == [item_id]

            await partitioner.apply(first, result)
            await db.commit()

            with pytest.raises(Conflict):
                await other_partitioner.apply(other_booking, other_result)
            await other_db.rollback()

        assert (await reload(session_factory, Item, item_id)).status == "scheduled"
        assert (await reload(session_factory, Booking, first_id)).pickup_item_ids == [item_id]
        assert (await reload(session_factory, Booking, second_id)).pickup_item_ids == []
