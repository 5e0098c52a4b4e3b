"""Tests for the authoritative booking service."""

import asyncio
from dataclasses import replace
from datetime import date, time

import pytest

from agenda.booking.notifications import NotificationDispatcher
from agenda.booking.service import BookingService
from agenda.booking.store import InMemoryBookingStore
from agenda.config import AppConfig, NotificationConfig, SchedulingConfig
from agenda.errors import DataStoreUnavailable, RejectionReason
from agenda.schemas.booking_schema import (
    Actor,
    BookingRequest,
    BookingStatus,
    ClientIdentity,
)
from agenda.schemas.calendar_schema import BlockedInterval
from tests.conftest import (
    CLIENT_PHONE,
    FRIDAY,
    OTHER_PHONE,
    THURSDAY,
    TODAY,
    RecordingPush,
    make_booking,
    make_policy,
    make_service,
)

CLIENT = Actor(phone=CLIENT_PHONE)
ADMIN = Actor(is_admin=True, user_id="admin-1")


def make_request(
    day: date = THURSDAY,
    start: time = time(14, 0),
    service=None,
    name: str = "Maria Silva",
    phone: str = CLIENT_PHONE,
    end: time = None,
) -> BookingRequest:
    return BookingRequest(
        booking_date=day,
        start_time=start,
        service=service or make_service(60),
        client=ClientIdentity(name=name, phone=phone, email="maria@example.pt"),
        end_time=end,
    )


class StaleReadStore(InMemoryBookingStore):
    """Never reports existing bookings, so only the write constraint can catch a clash."""

    async def get_booked_intervals(self, day, professional_id):
        return []


class BrokenStore(InMemoryBookingStore):
    async def get_blocked_intervals(self, day):
        raise ConnectionError("database unreachable")


class SlowStore(InMemoryBookingStore):
    async def get_date_exceptions(self, day):
        await asyncio.sleep(1.0)
        return []


class ExplodingNotifier(NotificationDispatcher):
    async def dispatch(self, event, connected_professionals=None):
        raise RuntimeError("notifier crashed")


class TestCreate:
    @pytest.mark.asyncio
    async def test_reserve_free_slot(self, booking_service, store):
        result = await booking_service.validate_and_reserve(make_request(), CLIENT)
        assert result.success
        booking = result.booking
        assert booking.id.startswith("BK-")
        assert booking.end_time == time(15, 0)
        assert booking.status == BookingStatus.CONFIRMED
        assert (await store.get_booking(booking.id)) is not None

    @pytest.mark.asyncio
    async def test_phone_is_stored_normalized(self, booking_service):
        result = await booking_service.validate_and_reserve(
            make_request(phone="912 345 678"), CLIENT
        )
        assert result.booking.client_phone == CLIENT_PHONE

    @pytest.mark.asyncio
    async def test_overlap_rejected(self, booking_service):
        await booking_service.validate_and_reserve(make_request(), CLIENT)
        result = await booking_service.validate_and_reserve(make_request(start=time(14, 30)), CLIENT)
        assert not result.success
        assert result.reason == RejectionReason.SLOT_CONFLICT

    @pytest.mark.asyncio
    async def test_abutting_accepted(self, booking_service):
        await booking_service.validate_and_reserve(make_request(), CLIENT)
        result = await booking_service.validate_and_reserve(make_request(start=time(15, 0)), CLIENT)
        assert result.success

    @pytest.mark.asyncio
    async def test_holiday_rejected(self, booking_service):
        result = await booking_service.validate_and_reserve(make_request(day=TODAY), CLIENT)
        assert result.reason == RejectionReason.DATE_CLOSED

    @pytest.mark.asyncio
    async def test_full_day_block_rejected(self, booking_service, store):
        store.add_block(BlockedInterval(blocked_date=THURSDAY, is_full_day=True))
        result = await booking_service.validate_and_reserve(make_request(), CLIENT)
        assert result.reason == RejectionReason.DATE_CLOSED

    @pytest.mark.asyncio
    async def test_outside_working_hours_rejected(self, booking_service):
        result = await booking_service.validate_and_reserve(make_request(start=time(18, 0)), CLIENT)
        assert result.reason == RejectionReason.SLOT_CONFLICT

    @pytest.mark.asyncio
    async def test_missing_name_rejected(self, booking_service):
        result = await booking_service.validate_and_reserve(make_request(name="  "), CLIENT)
        assert result.reason == RejectionReason.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_landline_rejected_for_client(self, booking_service):
        result = await booking_service.validate_and_reserve(
            make_request(phone="212345678"), Actor(phone="212345678")
        )
        assert result.reason == RejectionReason.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_admin_may_book_any_phone(self, booking_service):
        result = await booking_service.validate_and_reserve(make_request(phone="212345678"), ADMIN)
        assert result.success

    @pytest.mark.asyncio
    async def test_client_cannot_book_for_another_phone(self, booking_service):
        result = await booking_service.validate_and_reserve(
            make_request(phone=OTHER_PHONE), CLIENT
        )
        assert result.reason == RejectionReason.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_service_below_minimum_duration_rejected(self, booking_service):
        result = await booking_service.validate_and_reserve(
            make_request(service=make_service(3)), CLIENT
        )
        assert result.reason == RejectionReason.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_inconsistent_end_time_rejected(self, booking_service):
        result = await booking_service.validate_and_reserve(
            make_request(end=time(14, 45)), CLIENT
        )
        assert result.reason == RejectionReason.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_matching_end_time_accepted(self, booking_service):
        result = await booking_service.validate_and_reserve(make_request(end=time(15, 0)), CLIENT)
        assert result.success

    @pytest.mark.asyncio
    async def test_professional_lanes_are_independent(self, booking_service):
        ana = make_service(60, professional_id="pro-ana")
        rui = make_service(60, professional_id="pro-rui")
        first = await booking_service.validate_and_reserve(make_request(service=ana), CLIENT)
        second = await booking_service.validate_and_reserve(make_request(service=rui), CLIENT)
        assert first.success and second.success


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_simultaneous_requests_for_one_slot(self, booking_service, store):
        results = await asyncio.gather(
            booking_service.validate_and_reserve(make_request(), CLIENT),
            booking_service.validate_and_reserve(make_request(start=time(14, 30)), ADMIN),
            booking_service.validate_and_reserve(make_request(), CLIENT),
        )
        assert sum(r.success for r in results) == 1
        assert all(
            r.reason == RejectionReason.SLOT_CONFLICT for r in results if not r.success
        )
        assert len(await store.get_booked_intervals(THURSDAY, None)) == 1

    @pytest.mark.asyncio
    async def test_store_constraint_is_final_arbiter(self, clock):
        store = StaleReadStore(policy=make_policy())
        service = BookingService(store, clock=clock)
        await service.validate_and_reserve(make_request(), CLIENT)
        result = await service.validate_and_reserve(make_request(start=time(14, 30)), CLIENT)
        assert result.reason == RejectionReason.SLOT_CONFLICT
        assert len(store.all_bookings()) == 1


class TestFailClosed:
    @pytest.mark.asyncio
    async def test_failed_read_aborts(self, clock):
        store = BrokenStore(policy=make_policy())
        service = BookingService(store, clock=clock)
        with pytest.raises(DataStoreUnavailable):
            await service.validate_and_reserve(make_request(), CLIENT)
        assert store.all_bookings() == []

    @pytest.mark.asyncio
    async def test_slow_read_times_out(self, clock):
        store = SlowStore(policy=make_policy())
        config = AppConfig(scheduling=replace(SchedulingConfig(), data_fetch_timeout_sec=0.05))
        service = BookingService(store, clock=clock, config=config)
        with pytest.raises(DataStoreUnavailable):
            await service.list_bookable_slots(THURSDAY, make_service())
        assert store.all_bookings() == []


class TestCancel:
    @pytest.mark.asyncio
    async def test_client_cancels_well_ahead(self, booking_service, store):
        await store.insert_booking(make_booking())
        result = await booking_service.cancel("BK-1", CLIENT)
        assert result.success
        assert (await store.get_booking("BK-1")).status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_client_cancel_twenty_hours_ahead_rejected(self, booking_service, store, clock):
        await store.insert_booking(make_booking())
        clock.set(date(2025, 6, 11), time(18, 0))
        result = await booking_service.cancel("BK-1", CLIENT)
        assert result.reason == RejectionReason.CHANGE_WINDOW_CLOSED
        assert (await store.get_booking("BK-1")).status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_admin_cancel_twenty_hours_ahead_allowed(self, booking_service, store, clock):
        await store.insert_booking(make_booking())
        clock.set(date(2025, 6, 11), time(18, 0))
        result = await booking_service.cancel("BK-1", ADMIN)
        assert result.success

    @pytest.mark.asyncio
    async def test_exactly_twenty_four_hours_is_allowed(self, booking_service, store, clock):
        await store.insert_booking(make_booking())
        clock.set(date(2025, 6, 11), time(14, 0))
        assert (await booking_service.cancel("BK-1", CLIENT)).success

    @pytest.mark.asyncio
    async def test_one_minute_inside_window_rejected(self, booking_service, store, clock):
        await store.insert_booking(make_booking())
        clock.set(date(2025, 6, 11), time(14, 1))
        result = await booking_service.cancel("BK-1", CLIENT)
        assert result.reason == RejectionReason.CHANGE_WINDOW_CLOSED

    @pytest.mark.asyncio
    async def test_cancel_twice_rejected(self, booking_service, store):
        await store.insert_booking(make_booking())
        await booking_service.cancel("BK-1", CLIENT)
        result = await booking_service.cancel("BK-1", CLIENT)
        assert result.reason == RejectionReason.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_unknown_booking(self, booking_service):
        result = await booking_service.cancel("BK-404", ADMIN)
        assert result.reason == RejectionReason.NOT_FOUND

    @pytest.mark.asyncio
    async def test_other_client_cannot_cancel(self, booking_service, store):
        await store.insert_booking(make_booking())
        result = await booking_service.cancel("BK-1", Actor(phone=OTHER_PHONE))
        assert result.reason == RejectionReason.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_cancelled_slot_is_bookable_again(self, booking_service, store):
        await store.insert_booking(make_booking())
        await booking_service.cancel("BK-1", CLIENT)
        result = await booking_service.validate_and_reserve(make_request(), CLIENT)
        assert result.success


class TestReschedule:
    @pytest.mark.asyncio
    async def test_same_interval_as_before(self, booking_service, store):
        await store.insert_booking(make_booking())
        result = await booking_service.reschedule("BK-1", THURSDAY, time(14, 0), CLIENT)
        assert result.success
        assert result.booking.id == "BK-1"
        assert (result.booking.start_time, result.booking.end_time) == (time(14, 0), time(15, 0))
        assert len(store.all_bookings()) == 1

    @pytest.mark.asyncio
    async def test_overlapping_own_interval(self, booking_service, store):
        await store.insert_booking(make_booking())
        result = await booking_service.reschedule("BK-1", THURSDAY, time(14, 30), CLIENT)
        assert result.success
        assert result.booking.id == "BK-1"
        assert result.booking.start_time == time(14, 30)
        assert result.booking.end_time == time(15, 30)

    @pytest.mark.asyncio
    async def test_move_to_another_date(self, booking_service, store):
        await store.insert_booking(make_booking())
        result = await booking_service.reschedule("BK-1", FRIDAY, time(10, 0), CLIENT)
        assert result.success
        assert await store.get_booked_intervals(THURSDAY, None) == []
        assert len(await store.get_booked_intervals(FRIDAY, None)) == 1

    @pytest.mark.asyncio
    async def test_into_another_booking_rejected(self, booking_service, store):
        await store.insert_booking(make_booking())
        await store.insert_booking(make_booking("BK-2", start=time(16, 0), end=time(17, 0)))
        result = await booking_service.reschedule("BK-1", THURSDAY, time(15, 30), CLIENT)
        assert result.reason == RejectionReason.SLOT_CONFLICT
        assert (await store.get_booking("BK-1")).start_time == time(14, 0)

    @pytest.mark.asyncio
    async def test_to_closed_date_rejected(self, booking_service, store):
        await store.insert_booking(make_booking())
        result = await booking_service.reschedule("BK-1", date(2025, 6, 16), time(10, 0), CLIENT)
        assert result.reason == RejectionReason.DATE_CLOSED

    @pytest.mark.asyncio
    async def test_original_inside_window_rejected(self, booking_service, store, clock):
        await store.insert_booking(make_booking())
        clock.set(date(2025, 6, 11), time(18, 0))
        result = await booking_service.reschedule("BK-1", FRIDAY, time(10, 0), CLIENT)
        assert result.reason == RejectionReason.CHANGE_WINDOW_CLOSED

    @pytest.mark.asyncio
    async def test_new_target_inside_window_rejected(self, booking_service, store, clock):
        await store.insert_booking(make_booking(day=FRIDAY))
        clock.set(date(2025, 6, 11), time(11, 0))
        result = await booking_service.reschedule("BK-1", THURSDAY, time(10, 0), CLIENT)
        assert result.reason == RejectionReason.CHANGE_WINDOW_CLOSED
        assert "nova data" in result.message

    @pytest.mark.asyncio
    async def test_admin_ignores_window(self, booking_service, store, clock):
        await store.insert_booking(make_booking(day=FRIDAY))
        clock.set(date(2025, 6, 11), time(11, 0))
        result = await booking_service.reschedule("BK-1", THURSDAY, time(10, 0), ADMIN)
        assert result.success

    @pytest.mark.asyncio
    async def test_cancelled_cannot_be_rescheduled(self, booking_service, store):
        await store.insert_booking(make_booking(status=BookingStatus.CANCELLED))
        result = await booking_service.reschedule("BK-1", FRIDAY, time(10, 0), ADMIN)
        assert result.reason == RejectionReason.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_reminder_flag_reset(self, booking_service, store):
        await store.insert_booking(make_booking())
        await store.mark_reminder_sent("BK-1")
        result = await booking_service.reschedule("BK-1", FRIDAY, time(10, 0), CLIENT)
        assert result.booking.reminder_sent is False


class TestUpdateClientInfo:
    @pytest.mark.asyncio
    async def test_admin_updates(self, booking_service, store):
        await store.insert_booking(make_booking())
        result = await booking_service.update_client_info(
            "BK-1", ClientIdentity(name="Maria S. Costa", phone="936 000 111", email=""), ADMIN
        )
        assert result.success
        stored = await store.get_booking("BK-1")
        assert stored.client_name == "Maria S. Costa"
        assert stored.client_phone == "936000111"
        assert stored.client_email is None

    @pytest.mark.asyncio
    async def test_client_denied(self, booking_service, store):
        await store.insert_booking(make_booking())
        result = await booking_service.update_client_info(
            "BK-1", ClientIdentity(name="X", phone=CLIENT_PHONE), CLIENT
        )
        assert result.reason == RejectionReason.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_name_required(self, booking_service, store):
        await store.insert_booking(make_booking())
        result = await booking_service.update_client_info(
            "BK-1", ClientIdentity(name="", phone=CLIENT_PHONE), ADMIN
        )
        assert result.reason == RejectionReason.INVALID_INPUT


class TestReadSide:
    @pytest.mark.asyncio
    async def test_slots_exclude_booked_interval(self, booking_service, store):
        await store.insert_booking(make_booking())
        slots = await booking_service.list_bookable_slots(THURSDAY, make_service(60))
        assert time(14, 0) not in slots
        assert time(15, 0) in slots

    @pytest.mark.asyncio
    async def test_is_date_bookable(self, booking_service):
        assert await booking_service.is_date_bookable(THURSDAY, "unhas")
        assert not await booking_service.is_date_bookable(TODAY, "unhas")
        assert not await booking_service.is_date_bookable(THURSDAY, "laser")


class TestNotifications:
    @pytest.mark.asyncio
    async def test_push_sent_after_commit(self, store, clock):
        push = RecordingPush()
        service = BookingService(store, notifier=NotificationDispatcher(push=push), clock=clock)
        result = await service.validate_and_reserve(make_request(), CLIENT)
        await service.drain_notifications()
        assert push.sent == [(CLIENT_PHONE, f"created-{result.booking.id}")]

    @pytest.mark.asyncio
    async def test_notifier_failure_keeps_booking(self, store, clock):
        service = BookingService(store, notifier=ExplodingNotifier(), clock=clock)
        result = await service.validate_and_reserve(make_request(), CLIENT)
        await service.drain_notifications()
        assert result.success
        assert len(store.all_bookings()) == 1

    @pytest.mark.asyncio
    async def test_rejection_sends_nothing(self, store, clock):
        push = RecordingPush()
        service = BookingService(store, notifier=NotificationDispatcher(push=push), clock=clock)
        await service.validate_and_reserve(make_request(day=TODAY), CLIENT)
        await service.drain_notifications()
        assert push.sent == []

    @pytest.mark.asyncio
    async def test_slow_channel_does_not_delay_booking(self, store, clock):
        push = RecordingPush(delay=0.5)
        config = AppConfig(notifications=replace(NotificationConfig(), timeout_sec=5.0))
        notifier = NotificationDispatcher(push=push, config=config)
        service = BookingService(store, notifier=notifier, clock=clock, config=config)
        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await service.validate_and_reserve(make_request(), CLIENT)
        assert result.success
        assert loop.time() - started < 0.3
        assert push.sent == []
        await service.drain_notifications()
        assert push.sent == [(CLIENT_PHONE, f"created-{result.booking.id}")]
