"""
Store access used by the resolver and the ledger.

Every function takes an ``AsyncSession`` and leaves commit/rollback to the
caller. Driver and SQL errors are re-raised as ``StoreFailure``.
"""
import functools
import logging
from datetime import datetime
from fractions import Fraction

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .amounts import ZERO, to_amount
from .config import LIVE_BOOKING_STATUSES
from .errors import StoreFailure
from .models import Booking, GuarantorPoints, GuarantorRequest, User

logger = logging.getLogger(__name__)


def store_call(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"[rental-service] store call {fn.__name__} failed: {e}")
            raise StoreFailure(f"Store unavailable during {fn.__name__}") from e
    return wrapper


# ---- Bookings ----

@store_call
async def find_live_bookings_overlapping_dates(
    db: AsyncSession,
    first_day: datetime,
    last_day_end: datetime,
) -> list[Booking]:
    """Coarse filter: calendar ranges that touch [first_day, last_day_end]."""
    res = await db.execute(
        select(Booking).where(
            Booking.status.in_(LIVE_BOOKING_STATUSES),
            Booking.trip_start_date <= last_day_end,
            Booking.trip_end_date >= first_day,
        )
    )
    return list(res.scalars().all())


@store_call
async def get_booking(db: AsyncSession, booking_pk: int, for_update: bool = False) -> Booking | None:
    stmt = select(Booking).where(Booking.id == booking_pk)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


@store_call
async def get_booking_by_reference(db: AsyncSession, booking_id: str) -> Booking | None:
    res = await db.execute(select(Booking).where(Booking.booking_id == booking_id))
    return res.scalar_one_or_none()


@store_call
async def booking_reference_exists(db: AsyncSession, booking_id: str) -> bool:
    res = await db.execute(select(Booking.id).where(Booking.booking_id == booking_id))
    return res.first() is not None


# ---- Guarantor requests ----

@store_call
async def count_accepted_guarantors(db: AsyncSession, booking_pk: int) -> int:
    res = await db.execute(
        select(func.count(func.distinct(GuarantorRequest.guarantor_id))).where(
            GuarantorRequest.booking_id == booking_pk,
            GuarantorRequest.status == "accepted",
        )
    )
    return int(res.scalar_one() or 0)


@store_call
async def count_open_guarantors(db: AsyncSession, booking_pk: int) -> int:
    """Distinct guarantors that are accepted or still have a pending invitation."""
    res = await db.execute(
        select(func.count(func.distinct(GuarantorRequest.guarantor_id))).where(
            GuarantorRequest.booking_id == booking_pk,
            GuarantorRequest.status.in_(("pending", "accepted")),
        )
    )
    return int(res.scalar_one() or 0)


@store_call
async def find_accepted_requests(db: AsyncSession, booking_pk: int) -> list[GuarantorRequest]:
    res = await db.execute(
        select(GuarantorRequest)
        .where(
            GuarantorRequest.booking_id == booking_pk,
            GuarantorRequest.status == "accepted",
        )
        .order_by(GuarantorRequest.accepted_at, GuarantorRequest.id)
    )
    return list(res.scalars().all())


@store_call
async def find_pending_request(db: AsyncSession, booking_pk: int, guarantor_id: int) -> GuarantorRequest | None:
    res = await db.execute(
        select(GuarantorRequest).where(
            GuarantorRequest.booking_id == booking_pk,
            GuarantorRequest.guarantor_id == guarantor_id,
            GuarantorRequest.status == "pending",
        )
    )
    return res.scalar_one_or_none()


# ---- Ledger entries ----

@store_call
async def find_active_points(db: AsyncSession, booking_pk: int, guarantor_id: int) -> GuarantorPoints | None:
    res = await db.execute(
        select(GuarantorPoints).where(
            GuarantorPoints.booking_id == booking_pk,
            GuarantorPoints.guarantor_id == guarantor_id,
            GuarantorPoints.status == "active",
        )
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


@store_call
async def find_all_active_points(db: AsyncSession, booking_pk: int) -> list[GuarantorPoints]:
    res = await db.execute(
        select(GuarantorPoints)
        .where(
            GuarantorPoints.booking_id == booking_pk,
            GuarantorPoints.status == "active",
        )
        .order_by(GuarantorPoints.id)
        .execution_options(populate_existing=True)
    )
    return list(res.scalars().all())


@store_call
async def find_points_for_booking(
    db: AsyncSession,
    booking_pk: int,
    for_update: bool = False,
) -> list[GuarantorPoints]:
    stmt = (
        select(GuarantorPoints)
        .where(GuarantorPoints.booking_id == booking_pk)
        .order_by(GuarantorPoints.id)
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(stmt)
    return list(res.scalars().all())


@store_call
async def find_active_points_for_guarantor(db: AsyncSession, guarantor_id: int) -> list[GuarantorPoints]:
    res = await db.execute(
        select(GuarantorPoints).where(
            GuarantorPoints.guarantor_id == guarantor_id,
            GuarantorPoints.status == "active",
        )
    )
    return list(res.scalars().all())


@store_call
async def upsert_points(db: AsyncSession, entry: GuarantorPoints) -> GuarantorPoints:
    db.add(entry)
    await db.flush()
    return entry


# ---- Balances ----

@store_call
async def apply_balance_delta(
    db: AsyncSession,
    user_id: int,
    delta,
    floor_at_zero: bool = False,
) -> tuple[Fraction, Fraction] | None:
    """
    Move a balance by ``delta`` under a row lock. Returns (old, new), or None
    when the user no longer exists. Callers never hand in an absolute value.
    """
    res = await db.execute(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    user = res.scalar_one_or_none()
    if not user:
        return None

    old = to_amount(user.points)
    new = old + to_amount(delta)
    if floor_at_zero and new < ZERO:
        new = ZERO
    user.points = new
    user.total_points_earned = max(to_amount(user.total_points_earned) + (new - old), ZERO)
    await db.flush()
    return old, new


@store_call
async def find_booking_ids_with_points(db: AsyncSession) -> list[int]:
    res = await db.execute(
        select(GuarantorPoints.booking_id).distinct().order_by(GuarantorPoints.booking_id)
    )
    return list(res.scalars().all())
