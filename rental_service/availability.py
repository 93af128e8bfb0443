import logging
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .config import DEFAULT_DROPOFF_TIME, DEFAULT_PICKUP_TIME, LIVE_BOOKING_STATUSES
from .models import Booking
from .stores import find_live_bookings_overlapping_dates
from .trip_window import TripWindow, combine, parse_calendar_date

logger = logging.getLogger(__name__)


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    # half-open: touching at a boundary is not an overlap
    return a_start < b_end and a_end > b_start


def booking_window(booking: Booking) -> TripWindow:
    return TripWindow.from_parts(
        booking.trip_start_date,
        booking.trip_start_time,
        booking.trip_end_date,
        booking.trip_end_time,
    )


def conflicting_car_ids(candidates: Iterable[Booking], search: TripWindow) -> set[int]:
    """
    Precise filter over coarse candidates. Statuses are re-checked here so
    the result never depends on how the candidates were fetched.
    """
    excluded = set()
    for booking in candidates:
        if booking.status not in LIVE_BOOKING_STATUSES:
            continue
        window = booking_window(booking)
        if overlaps(window.start, window.end, search.start, search.end):
            logger.debug(
                f"[rental-service] collision for car {booking.car_id}: "
                f"req {search.start.isoformat()} - {search.end.isoformat()}, "
                f"booking {booking.booking_id} {window.start.isoformat()} - {window.end.isoformat()}"
            )
            excluded.add(booking.car_id)
    return excluded


async def find_unavailable_car_ids(db: AsyncSession, search: TripWindow) -> set[int]:
    """
    Two phases: calendar-date overlap in the store, then exact instants in
    memory. A store failure propagates as StoreFailure; there is no default.
    """
    candidates = await find_live_bookings_overlapping_dates(
        db,
        search.first_day(),
        search.last_day_end(),
    )
    excluded = conflicting_car_ids(candidates, search)
    if excluded:
        logger.info(f"[rental-service] excluding {len(excluded)} booked cars due to time overlap")
    return excluded


def search_window(
    start_date: Optional[str],
    end_date: Optional[str],
    pickup_time: Optional[str] = None,
    dropoff_time: Optional[str] = None,
) -> Optional[TripWindow]:
    """
    Build the requested window from listing query parameters. Returns None
    when either date is missing, meaning no availability filtering at all.
    """
    if not start_date or not end_date:
        return None

    start_day = parse_calendar_date(start_date)
    end_day = parse_calendar_date(end_date)
    return TripWindow(
        combine(start_day, pickup_time or DEFAULT_PICKUP_TIME),
        combine(end_day, dropoff_time or DEFAULT_DROPOFF_TIME),
    )
