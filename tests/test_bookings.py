from datetime import datetime

import pytest

from rental_service import bookings, guarantors, stores
from rental_service.config import DEFAULT_DROP_LOCATION
from rental_service.errors import Conflict, Forbidden, InvalidInput, LedgerFailure, NotFound, StoreFailure
from rental_service.schemas import CreateBookingRequest
from rental_service.trip_window import TripWindow

NOW = datetime(2030, 1, 1, 9, 0)


def _request(car_id, start="2030-01-07", start_time="10:00", end="2030-01-09", end_time="10:00", drop="Indiranagar"):
    return CreateBookingRequest(
        car_id=car_id,
        trip_start={"location": "Koramangala", "date": start, "time": start_time},
        trip_end={"location": drop, "date": end, "time": end_time},
    )


def test_total_days_rounds_up_with_a_minimum_of_one():
    assert bookings.total_days(TripWindow(datetime(2030, 1, 7, 10), datetime(2030, 1, 7, 12))) == 1
    assert bookings.total_days(TripWindow(datetime(2030, 1, 7, 10), datetime(2030, 1, 9, 10))) == 2
    assert bookings.total_days(TripWindow(datetime(2030, 1, 7, 10), datetime(2030, 1, 9, 11))) == 3


def test_weekend_pickup_is_surcharged():
    weekday = TripWindow(datetime(2030, 1, 7, 10), datetime(2030, 1, 8, 10))  # Monday
    weekend = TripWindow(datetime(2030, 1, 5, 10), datetime(2030, 1, 6, 10))  # Saturday
    assert bookings.quote_price(1000, weekday) == 1000
    assert bookings.quote_price(1000, weekend) == 1150


async def test_create_booking(db, make_user, make_car):
    renter = await make_user()
    car = await make_car(price_per_day=1500)

    booking = await bookings.create_booking(db, renter.id, _request(car.id, drop="  "), now=NOW)
    assert booking.booking_id.startswith("BK")
    assert booking.status == "pending"
    assert booking.total_days == 2
    assert booking.final_price == 3000
    assert booking.trip_end_location == DEFAULT_DROP_LOCATION
    assert booking.trip_start_date == datetime(2030, 1, 7)
    assert booking.trip_start_time == "10:00"


async def test_booking_references_are_unique(db, make_user, make_car):
    renter = await make_user()
    car = await make_car()
    first = await bookings.create_booking(db, renter.id, _request(car.id, "2030-01-07", end="2030-01-08"), now=NOW)
    second = await bookings.create_booking(db, renter.id, _request(car.id, "2030-01-10", end="2030-01-11"), now=NOW)
    assert first.booking_id != second.booking_id


@pytest.mark.parametrize(
    "kwargs",
    [
        {"start": "2029-12-31"},
        {"end": "2030-01-07", "end_time": "9:00"},
        {"end": "2030-01-07", "end_time": "10:00"},
        {"start": "someday"},
    ],
)
async def test_invalid_trip_windows(db, make_user, make_car, kwargs):
    renter = await make_user()
    car = await make_car()
    with pytest.raises(InvalidInput):
        await bookings.create_booking(db, renter.id, _request(car.id, **kwargs), now=NOW)


async def test_unknown_or_unavailable_car(db, make_user, make_car):
    renter = await make_user()
    retired = await make_car(status="inactive")
    with pytest.raises(NotFound):
        await bookings.create_booking(db, renter.id, _request(9999), now=NOW)
    with pytest.raises(InvalidInput):
        await bookings.create_booking(db, renter.id, _request(retired.id), now=NOW)


async def test_overlapping_booking_for_same_car_conflicts(db, make_user, make_car):
    renter = await make_user()
    car = await make_car()
    other_car = await make_car()
    await bookings.create_booking(db, renter.id, _request(car.id), now=NOW)

    with pytest.raises(Conflict):
        await bookings.create_booking(db, renter.id, _request(car.id, "2030-01-08", end="2030-01-10"), now=NOW)

    # back-to-back and other cars are fine
    await bookings.create_booking(db, renter.id, _request(car.id, "2030-01-09", end="2030-01-10"), now=NOW)
    await bookings.create_booking(db, renter.id, _request(other_car.id, "2030-01-08", end="2030-01-10"), now=NOW)


async def test_status_change_needs_owner_or_admin(db, make_user, make_car):
    renter = await make_user()
    stranger = await make_user()
    car = await make_car()
    booking = await bookings.create_booking(db, renter.id, _request(car.id), now=NOW)

    with pytest.raises(Forbidden):
        await bookings.update_status(db, booking.booking_id, "confirmed", stranger.id, is_admin=False)
    with pytest.raises(InvalidInput):
        await bookings.update_status(db, booking.booking_id, "teleported", renter.id, is_admin=False)

    updated, outcome = await bookings.update_status(db, booking.booking_id, "confirmed", stranger.id, is_admin=True)
    assert updated.status == "confirmed"
    assert updated.confirmed_at is not None
    assert outcome is None


async def test_cancellation_reverses_points(db, make_user, make_car):
    renter = await make_user()
    backer = await make_user()
    car = await make_car(price_per_day=1000)
    booking = await bookings.create_booking(db, renter.id, _request(car.id), now=NOW)

    request = await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")
    await guarantors.accept_request(db, request.id, backer.id)
    await db.refresh(backer)
    assert backer.points == 200

    cancelled, outcome = await bookings.update_status(
        db, booking.booking_id, "cancelled", renter.id, is_admin=False, cancellation_reason="Plans changed"
    )
    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_by == "user"
    assert outcome.ok
    await db.refresh(backer)
    assert backer.points == 0

    with pytest.raises(Conflict):
        await bookings.update_status(db, booking.booking_id, "confirmed", renter.id, is_admin=False)


async def test_cancellation_stands_when_reversal_fails(db, make_user, make_car, monkeypatch):
    renter = await make_user()
    backer = await make_user()
    car = await make_car(price_per_day=1000)
    booking = await bookings.create_booking(db, renter.id, _request(car.id), now=NOW)
    request = await guarantors.send_request(db, booking.booking_id, backer.guarantor_code, "admin")
    await guarantors.accept_request(db, request.id, backer.id)
    renter_id, reference = renter.id, booking.booking_id

    async def unavailable(*args, **kwargs):
        raise StoreFailure("connection reset")

    monkeypatch.setattr(stores, "find_all_active_points", unavailable)

    cancelled, outcome = await bookings.update_status(
        db, reference, "cancelled", renter_id, is_admin=False, cancellation_reason="Plans changed"
    )
    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "Plans changed"
    assert not outcome.ok
    assert isinstance(outcome.error, LedgerFailure)

    monkeypatch.undo()
    await db.refresh(backer)
    assert backer.points == 200
    assert len(await stores.find_all_active_points(db, cancelled.id)) == 1
