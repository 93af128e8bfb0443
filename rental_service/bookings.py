import asyncio
import logging
import math
import random
import string
import time
from datetime import datetime, timedelta
from fractions import Fraction

from sqlalchemy.ext.asyncio import AsyncSession

from . import stores
from .amounts import to_amount
from .availability import booking_window, overlaps
from .config import (
    BOOKING_STATUSES,
    DEFAULT_CANCELLATION_REASON,
    DEFAULT_DROP_LOCATION,
    WEEKEND_SURCHARGE,
)
from .errors import Conflict, Forbidden, InvalidInput, NotFound
from .ledger import LedgerOutcome, reverse_points
from .models import Booking, Car, utcnow
from .rabbitmq import publisher
from .schemas import CreateBookingRequest
from .trip_window import TripWindow, parse_calendar_date

logger = logging.getLogger(__name__)

BOOKING_ID_ATTEMPTS = 10
_ALPHABET = string.ascii_uppercase + string.digits


def _random_suffix(length: int) -> str:
    return "".join(random.choices(_ALPHABET, k=length))


async def generate_booking_id(db: AsyncSession) -> str:
    for _ in range(BOOKING_ID_ATTEMPTS):
        candidate = f"BK{str(int(time.time() * 1000))[-6:]}{_random_suffix(3)}"
        if not await stores.booking_reference_exists(db, candidate):
            return candidate
        await asyncio.sleep(0.01)
    return f"BK{int(time.time() * 1000)}{_random_suffix(4)}"


def total_days(window: TripWindow) -> int:
    days = math.ceil((window.end - window.start) / timedelta(days=1))
    return max(days, 1)


def quote_price(price_per_day, window: TripWindow) -> Fraction:
    price = to_amount(price_per_day) * total_days(window)
    if window.start.weekday() >= 5:
        price = price * (1 + WEEKEND_SURCHARGE)
    return price


async def create_booking(
    db: AsyncSession,
    user_id: int,
    data: CreateBookingRequest,
    now: datetime | None = None,
) -> Booking:
    if not (data.trip_start.location or "").strip():
        raise InvalidInput("Pickup location is required")

    start_day = parse_calendar_date(data.trip_start.date)
    end_day = parse_calendar_date(data.trip_end.date)
    window = TripWindow.from_parts(start_day, data.trip_start.time, end_day, data.trip_end.time)

    current = (now or datetime.now()).replace(second=0, microsecond=0)
    if window.start < current:
        raise InvalidInput("Trip start date and time cannot be in the past")
    if window.end <= window.start:
        raise InvalidInput("Trip end date and time must be after start date and time")

    car = await db.get(Car, data.car_id)
    if not car:
        raise NotFound("Car not found")
    if not car.is_available or car.status != "active":
        raise InvalidInput("Car is not available for booking")

    candidates = await stores.find_live_bookings_overlapping_dates(db, window.first_day(), window.last_day_end())
    for other in candidates:
        if other.car_id != car.id:
            continue
        other_window = booking_window(other)
        if overlaps(other_window.start, other_window.end, window.start, window.end):
            raise Conflict("Car is already booked for the selected dates")

    drop_location = (data.trip_end.location or "").strip() or DEFAULT_DROP_LOCATION

    booking = Booking(
        booking_id=await generate_booking_id(db),
        car_id=car.id,
        user_id=user_id,
        trip_start_location=data.trip_start.location.strip(),
        trip_start_latitude=data.trip_start.latitude,
        trip_start_longitude=data.trip_start.longitude,
        trip_start_date=start_day,
        trip_start_time=data.trip_start.time,
        trip_end_location=drop_location,
        trip_end_latitude=data.trip_end.latitude,
        trip_end_longitude=data.trip_end.longitude,
        trip_end_date=end_day,
        trip_end_time=data.trip_end.time,
        total_days=total_days(window),
        final_price=quote_price(car.price_per_day, window),
        status="pending",
    )
    db.add(booking)
    await db.commit()

    logger.info(f"[rental-service] booking {booking.booking_id} created for car {car.id}")
    await publisher.emit(
        "booking.created",
        {
            "booking_id": booking.booking_id,
            "car_id": car.id,
            "user_id": user_id,
            "trip_start": window.start,
            "trip_end": window.end,
            "final_price": booking.final_price,
        },
    )
    return booking


async def get_booking(db: AsyncSession, booking_id: str) -> Booking:
    booking = await stores.get_booking_by_reference(db, booking_id)
    if not booking:
        raise NotFound("Booking not found")
    return booking


async def update_status(
    db: AsyncSession,
    booking_id: str,
    status: str,
    actor_id: int | None,
    is_admin: bool,
    cancellation_reason: str | None = None,
) -> tuple[Booking, LedgerOutcome | None]:
    if status not in BOOKING_STATUSES:
        raise InvalidInput(f"Invalid booking status: {status}")

    booking = await get_booking(db, booking_id)
    if not is_admin and booking.user_id != actor_id:
        raise Forbidden("Access denied")
    if booking.status == "cancelled":
        raise Conflict("Booking is already cancelled")

    now = utcnow()
    previous = booking.status
    booking.status = status
    if status == "cancelled":
        booking.cancelled_by = "admin" if is_admin else "user"
        booking.cancelled_at = now
        booking.cancellation_reason = cancellation_reason or ""
    elif status == "confirmed":
        booking.confirmed_at = now
    elif status == "completed":
        booking.completed_at = now
    await db.commit()

    await publisher.emit(
        "booking.status_changed",
        {"booking_id": booking.booking_id, "from": previous, "to": status},
    )

    if status != "cancelled":
        return booking, None

    # a failed ledger run rolls the session back and expires the booking
    booking_pk, reference = booking.id, booking.booking_id

    outcome = await reverse_points(db, booking_pk, cancellation_reason or DEFAULT_CANCELLATION_REASON)
    if not outcome.ok:
        # cancellation stands regardless
        logger.error(f"[rental-service] points reversal failed for booking {reference}: {outcome.error.detail}")
        await db.refresh(booking)

    await publisher.emit("booking.cancelled", {"booking_id": reference})
    if outcome.ok and outcome.changes:
        await publisher.emit(
            "guarantor_points.reversed",
            {
                "booking_id": reference,
                "changes": [{"guarantor_id": c.guarantor_id, "delta": c.delta} for c in outcome.changes],
            },
        )
    return booking, outcome
