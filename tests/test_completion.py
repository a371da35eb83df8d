"""
Tests for staff service completion.
"""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from valet.domain.bookings.completion import CompletionCoordinator
from valet.domain.bookings.repository import BookingRepository
from valet.exceptions import Forbidden, InvalidState, NotFound, UpstreamFailure
from valet.models import Booking, BookingEvent, Item

from .conftest import RecordingNotifier, make_booking, make_customer, make_item, reload


async def _staff(db):
    return await make_customer(db, "ops@mystoragevalet.com", profile=False, staff=True)


class TestCompleteService:
    async def test_pickup_completion_stores_items_and_notifies_once(
        self, db, session_factory, clock, notifier
    ):
        staff = await _staff(db)
        owner = await make_customer(db, first_name="Alex")
        i1 = await make_item(db, owner, "scheduled")
        i2 = await make_item(db, owner, "scheduled")
        booking = await make_booking(db, owner, "confirmed", pickup=[i1.id, i2.id])

        result = await CompletionCoordinator(db, notifier, clock).complete(booking.id, staff.id)

        assert not result.already_completed
        assert result.items_updated == 2
        assert result.booking.status == "completed"
        assert result.booking.completed_at is not None
        for item_id in (i1.id, i2.id):
            assert (await reload(session_factory, Item, item_id)).status == "stored"
        assert notifier.sent == [
            {
                "to": "alex@example.com",
                "service_type": "pickup",
                "first_name": "Alex",
                "item_count": 2,
            }
        ]
        events = (await db.execute(select(BookingEvent.event_type))).scalars().all()
        assert "service_completed" in events

    async def test_delivery_completion_returns_items_home(
        self, db, session_factory, clock, notifier
    ):
        staff = await _staff(db)
        owner = await make_customer(db)
        item = await make_item(db, owner, "scheduled")
        booking = await make_booking(
            db, owner, "pending_confirmation", service_type="delivery", delivery=[item.id]
        )

        result = await CompletionCoordinator(db, notifier, clock).complete(booking.id, staff.id)

        assert result.booking.status == "completed"
        assert (await reload(session_factory, Item, item.id)).status == "home"
        assert notifier.sent[0]["service_type"] == "delivery"

    async def test_second_completion_is_a_no_op(self, db, clock, notifier):
        staff = await _staff(db)
        owner = await make_customer(db)
        booking = await make_booking(db, owner, "confirmed")
        coordinator = CompletionCoordinator(db, notifier, clock)

        await coordinator.complete(booking.id, staff.id)

        with pytest.raises(InvalidState):
            await coordinator.complete(booking.id, staff.id)
        assert len(notifier.sent) == 1

    async def test_concurrent_completion_sends_one_email(
        self, db, session_factory, clock, notifier, monkeypatch
    ):
        staff = await _staff(db)
        owner = await make_customer(db)
        item = await make_item(db, owner, "scheduled")
        booking = await make_booking(db, owner, "confirmed", pickup=[item.id])
        staff_id = staff.id
        booking_id, item_id = booking.id, item.id

        original = BookingRepository.set_item_status
        calls = {"n": 0}

        async def racing_set_item_status(session, item_ids, status, owner_id, now):
            calls["n"] += 1
            if calls["n"] == 1:
                # The other staff request wins between our status check and our CAS
                async with session_factory() as other_db:
                    winner = await CompletionCoordinator(other_db, notifier, clock).complete(
                        booking_id, staff_id
                    )
                    assert winner.booking.status == "completed"
            return await original(session, item_ids, status, owner_id, now)

        monkeypatch.setattr(
            BookingRepository, "set_item_status", staticmethod(racing_set_item_status)
        )

        result = await CompletionCoordinator(db, notifier, clock).complete(booking_id, staff_id)

        assert result.already_completed
        assert result.booking is None
        assert len(notifier.sent) == 1
        assert (await reload(session_factory, Booking, booking_id)).status == "completed"
        assert (await reload(session_factory, Item, item_id)).status == "stored"

    async def test_non_staff_is_forbidden(self, db, session_factory, clock, notifier):
        owner = await make_customer(db)
        booking = await make_booking(db, owner, "confirmed")

        with pytest.raises(Forbidden):
            await CompletionCoordinator(db, notifier, clock).complete(booking.id, owner.id)

        assert (await reload(session_factory, Booking, booking.id)).status == "confirmed"
        assert notifier.sent == []

    @pytest.mark.parametrize("status", ["pending_items", "canceled", "completed"])
    async def test_wrong_status_is_rejected(self, db, clock, notifier, status):
        staff = await _staff(db)
        owner = await make_customer(db)
        booking = await make_booking(db, owner, status)

        with pytest.raises(InvalidState) as exc_info:
            await CompletionCoordinator(db, notifier, clock).complete(booking.id, staff.id)

        assert f"'{status}'" in exc_info.value.message
        assert notifier.sent == []

    async def test_unknown_booking(self, db, clock, notifier):
        staff = await _staff(db)

        with pytest.raises(NotFound):
            await CompletionCoordinator(db, notifier, clock).complete("missing", staff.id)

    async def test_notifier_failure_does_not_undo_completion(self, db, session_factory, clock):
        staff = await _staff(db)
        owner = await make_customer(db)
        booking = await make_booking(db, owner, "confirmed")
        failing = RecordingNotifier(fail=True)

        result = await CompletionCoordinator(db, failing, clock).complete(booking.id, staff.id)

        assert result.booking.status == "completed"
        assert len(failing.sent) == 1
        assert (await reload(session_factory, Booking, booking.id)).status == "completed"

    async def test_item_update_failure_aborts_completion(
        self, db, session_factory, clock, notifier, monkeypatch
    ):
        staff = await _staff(db)
        owner = await make_customer(db)
        item = await make_item(db, owner, "scheduled")
        booking = await make_booking(db, owner, "confirmed", pickup=[item.id])
        booking_id, item_id, staff_id = booking.id, item.id, staff.id

        async def broken_set_item_status(session, item_ids, status, owner_id, now):
            raise OperationalError("UPDATE items", {}, Exception("database is locked"))

        monkeypatch.setattr(
            BookingRepository, "set_item_status", staticmethod(broken_set_item_status)
        )

        with pytest.raises(UpstreamFailure):
            await CompletionCoordinator(db, notifier, clock).complete(booking_id, staff_id)

        stored = await reload(session_factory, Booking, booking_id)
        assert stored.status == "confirmed"
        assert stored.completed_at is None
        assert (await reload(session_factory, Item, item_id)).status == "scheduled"
        assert notifier.sent == []

    async def test_missing_profile_skips_notification(self, db, clock, notifier):
        staff = await _staff(db)
        owner = await make_customer(db, "noprofile@example.com", profile=False)
        booking = await make_booking(db, owner, "confirmed")

        result = await CompletionCoordinator(db, notifier, clock).complete(booking.id, staff.id)

        assert result.booking.status == "completed"
        assert notifier.sent == []

    async def test_completable_set_is_configurable(self, db, clock, notifier):
        staff = await _staff(db)
        owner = await make_customer(db)
        booking = await make_booking(db, owner, "pending_confirmation")

        with pytest.raises(InvalidState):
            await CompletionCoordinator(
                db, notifier, clock, completable=["confirmed"]
            ).complete(booking.id, staff.id)
