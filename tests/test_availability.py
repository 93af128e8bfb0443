from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from rental_service.availability import (
    conflicting_car_ids,
    find_unavailable_car_ids,
    overlaps,
    search_window,
)
from rental_service.errors import StoreFailure
from rental_service.trip_window import TripWindow


def test_touching_boundaries_do_not_overlap():
    start, end = datetime(2030, 1, 7, 10), datetime(2030, 1, 8, 10)
    assert not overlaps(start, end, datetime(2030, 1, 8, 10), datetime(2030, 1, 9, 10))
    assert not overlaps(start, end, datetime(2030, 1, 6, 10), datetime(2030, 1, 7, 10))
    assert overlaps(start, end, datetime(2030, 1, 8, 9, 59), datetime(2030, 1, 9, 10))


def test_search_window_needs_both_dates():
    assert search_window(None, "2030-01-08") is None
    assert search_window("2030-01-07", "") is None


def test_search_window_defaults_cover_whole_days():
    window = search_window("2030-01-07", "2030-01-08")
    assert window.start == datetime(2030, 1, 7, 0, 0)
    assert window.end == datetime(2030, 1, 8, 23, 59)


def test_search_window_uses_given_times():
    window = search_window("07-01-2030", "08-01-2030", "10:00", "6:30 pm")
    assert window.start == datetime(2030, 1, 7, 10, 0)
    assert window.end == datetime(2030, 1, 8, 18, 30)


def _booking(car_id, status, start, start_time, end, end_time):
    return SimpleNamespace(
        booking_id=f"BK-{car_id}",
        car_id=car_id,
        status=status,
        trip_start_date=start,
        trip_start_time=start_time,
        trip_end_date=end,
        trip_end_time=end_time,
    )


def test_conflicting_car_ids_rechecks_status():
    search = TripWindow(datetime(2030, 1, 7, 12), datetime(2030, 1, 8, 12))
    candidates = [
        _booking(1, "confirmed", datetime(2030, 1, 7), "10:00", datetime(2030, 1, 8), "10:00"),
        _booking(2, "completed", datetime(2030, 1, 7), "10:00", datetime(2030, 1, 8), "10:00"),
        _booking(3, "active", datetime(2030, 1, 6), "10:00", datetime(2030, 1, 7), "12:00"),
    ]
    assert conflicting_car_ids(candidates, search) == {1}


async def test_boundary_touch_is_available(db, make_user, make_car, make_booking):
    renter = await make_user()
    car = await make_car()
    await make_booking(car, renter, datetime(2030, 1, 7), datetime(2030, 1, 8), "10:00", "10:00")

    search = TripWindow(datetime(2030, 1, 8, 10), datetime(2030, 1, 9, 10))
    assert await find_unavailable_car_ids(db, search) == set()


async def test_true_overlap_excludes(db, make_user, make_car, make_booking):
    renter = await make_user()
    booked = await make_car()
    free = await make_car()
    await make_booking(booked, renter, datetime(2030, 1, 7), datetime(2030, 1, 8), "10:00", "10:00")

    search = TripWindow(datetime(2030, 1, 8, 9), datetime(2030, 1, 9, 10))
    excluded = await find_unavailable_car_ids(db, search)
    assert booked.id in excluded
    assert free.id not in excluded


async def test_same_day_times_decide(db, make_user, make_car, make_booking):
    renter = await make_user()
    car = await make_car()
    await make_booking(car, renter, datetime(2030, 1, 7), datetime(2030, 1, 7), "9:00 am", "1:00 pm")

    afternoon = TripWindow(datetime(2030, 1, 7, 13), datetime(2030, 1, 7, 18))
    lunch = TripWindow(datetime(2030, 1, 7, 12), datetime(2030, 1, 7, 18))
    assert await find_unavailable_car_ids(db, afternoon) == set()
    assert await find_unavailable_car_ids(db, lunch) == {car.id}


@pytest.mark.parametrize("status", ["cancelled", "completed", "rejected"])
async def test_only_live_statuses_conflict(db, make_user, make_car, make_booking, status):
    renter = await make_user()
    car = await make_car()
    await make_booking(car, renter, datetime(2030, 1, 7), datetime(2030, 1, 9), "10:00", "10:00", status=status)

    search = TripWindow(datetime(2030, 1, 8), datetime(2030, 1, 8, 23, 59))
    assert await find_unavailable_car_ids(db, search) == set()


async def test_booking_without_times_uses_midnight(db, make_user, make_car, make_booking):
    renter = await make_user()
    car = await make_car()
    await make_booking(car, renter, datetime(2030, 1, 7), datetime(2030, 1, 8))

    # booking ends at midnight of the 8th, so the 8th itself is free
    search = TripWindow(datetime(2030, 1, 8), datetime(2030, 1, 8, 23, 59))
    assert await find_unavailable_car_ids(db, search) == set()


async def test_store_failure_propagates(db, monkeypatch):
    async def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(db, "execute", broken)

    search = TripWindow(datetime(2030, 1, 7), datetime(2030, 1, 8))
    with pytest.raises(StoreFailure):
        await find_unavailable_car_ids(db, search)
