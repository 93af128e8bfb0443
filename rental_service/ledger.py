"""
Guarantor incentive ledger.

A booking's pool is 10% of its final price, split evenly between every
guarantor that accepted it. Shares are always recomputed from the booking
amount, never from a previously stored share, and balances only ever move by
deltas.

The public coroutines (``allocate_points``, ``reallocate_booking``,
``reverse_points``) are the failure boundary: they never raise, they return
a ``LedgerOutcome`` whose ``error`` carries the ``LedgerFailure``.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from fractions import Fraction

from sqlalchemy.ext.asyncio import AsyncSession

from . import stores
from .amounts import ZERO, to_amount
from .config import DEFAULT_CANCELLATION_REASON, MAX_GUARANTORS, POOL_RATE
from .errors import LedgerFailure, NotFound
from .locks import BookingLocks
from .models import Booking, GuarantorPoints, GuarantorRequest, User, utcnow
from .redis_client import redis_client

logger = logging.getLogger(__name__)

booking_locks = BookingLocks(redis_client)


def pool_for(booking_amount) -> Fraction:
    return to_amount(booking_amount) * POOL_RATE


def share_for(booking_amount, total_guarantors: int) -> Fraction:
    if total_guarantors < 1:
        raise ValueError("a pool needs at least one guarantor")
    return pool_for(booking_amount) / total_guarantors


@dataclass
class BalanceChange:
    guarantor_id: int
    delta: Fraction
    old_balance: Fraction | None = None
    new_balance: Fraction | None = None


@dataclass
class LedgerOutcome:
    booking_id: int
    action: str
    ok: bool = True
    skipped: bool = False
    error: LedgerFailure | None = None
    changes: list[BalanceChange] = field(default_factory=list)

    @property
    def net_delta(self) -> Fraction:
        return sum((c.delta for c in self.changes), ZERO)


async def _move_balance(
    db: AsyncSession,
    guarantor_id: int,
    delta: Fraction,
    floor_at_zero: bool = False,
) -> BalanceChange:
    moved = await stores.apply_balance_delta(db, guarantor_id, delta, floor_at_zero=floor_at_zero)
    if moved is None:
        logger.warning(f"[rental-service] guarantor {guarantor_id} missing; balance not moved by {delta}")
        return BalanceChange(guarantor_id, delta)
    old, new = moved
    return BalanceChange(guarantor_id, new - old, old, new)


async def _allocate(
    db: AsyncSession,
    booking: Booking,
    request: GuarantorRequest,
    now: datetime,
    outcome: LedgerOutcome,
):
    if request.status != "accepted":
        raise LedgerFailure(f"Guarantor request {request.id} is {request.status}, not accepted")

    guarantors = await stores.count_accepted_guarantors(db, booking.id)
    if guarantors < 1 or guarantors > MAX_GUARANTORS:
        raise LedgerFailure(f"Booking {booking.booking_id} has {guarantors} accepted guarantors")

    amount = to_amount(booking.final_price)
    pool = pool_for(amount)
    per_guarantor = share_for(amount, guarantors)

    created = None
    existing = await stores.find_active_points(db, booking.id, request.guarantor_id)
    if existing is None:
        created = await stores.upsert_points(
            db,
            GuarantorPoints(
                booking_id=booking.id,
                guarantor_id=request.guarantor_id,
                guarantor_request_id=request.id,
                booking_amount=amount,
                total_pool_amount=pool,
                total_guarantors=guarantors,
                points_allocated=per_guarantor,
                status="active",
                booking_status_at_allocation=booking.status,
                created_at=now,
                updated_at=now,
            ),
        )
        outcome.changes.append(await _move_balance(db, request.guarantor_id, per_guarantor))

    for entry in await stores.find_all_active_points(db, booking.id):
        if created is not None and entry.id == created.id:
            continue
        delta = per_guarantor - to_amount(entry.points_allocated)
        entry.booking_amount = amount
        entry.total_pool_amount = pool
        entry.total_guarantors = guarantors
        entry.points_allocated = per_guarantor
        entry.updated_at = now
        if delta != ZERO:
            outcome.changes.append(await _move_balance(db, entry.guarantor_id, delta))

    await db.flush()
    logger.info(
        f"[rental-service] points allocated for booking {booking.booking_id}: "
        f"pool={pool} guarantors={guarantors} per_guarantor={per_guarantor}"
    )


async def _reverse(db: AsyncSession, booking: Booking, reason: str, now: datetime, outcome: LedgerOutcome):
    entries = await stores.find_all_active_points(db, booking.id)
    if not entries:
        logger.info(f"[rental-service] no active points for booking {booking.booking_id}")
        return

    for entry in entries:
        # recomputed from the booking amount, not the stored share
        amount = share_for(entry.booking_amount, entry.total_guarantors)
        entry.status = "reversed"
        entry.reversed_at = now
        entry.reversal_reason = reason
        entry.updated_at = now
        outcome.changes.append(await _move_balance(db, entry.guarantor_id, -amount, floor_at_zero=True))

    await db.flush()
    logger.info(f"[rental-service] reversed {len(entries)} points records for booking {booking.booking_id}")


async def _run(db: AsyncSession, booking_pk: int, outcome: LedgerOutcome, work, locks: BookingLocks):
    try:
        async with locks.hold(booking_pk):
            booking = await stores.get_booking(db, booking_pk, for_update=True)
            if booking is None:
                raise LedgerFailure(f"Booking {booking_pk} not found")
            await work(booking, outcome)
            await db.commit()
    except Exception as e:
        failure = e if isinstance(e, LedgerFailure) else LedgerFailure(str(e) or type(e).__name__)
        if failure is not e:
            failure.__cause__ = e
        logger.exception(f"[rental-service] ledger {outcome.action} failed for booking {booking_pk}: {failure.detail}")
        try:
            await db.rollback()
        except Exception as rollback_error:
            logger.error(f"[rental-service] rollback after ledger failure also failed: {rollback_error}")
        outcome.ok = False
        outcome.error = failure
        outcome.changes = []
    return outcome


async def allocate_points(
    db: AsyncSession,
    booking_pk: int,
    request_id: int,
    locks: BookingLocks = booking_locks,
) -> LedgerOutcome:
    """Allocate/rebalance after ``request_id`` was accepted. Safe to re-run."""
    outcome = LedgerOutcome(booking_id=booking_pk, action="allocate")

    async def work(booking: Booking, outcome: LedgerOutcome):
        if booking.status == "cancelled":
            # reversal is terminal for a booking
            outcome.skipped = True
            return
        accepted = await stores.find_accepted_requests(db, booking.id)
        request = next((r for r in accepted if r.id == request_id), None)
        if request is None:
            raise LedgerFailure(f"Accepted guarantor request {request_id} not found on booking {booking.booking_id}")
        await _allocate(db, booking, request, utcnow(), outcome)

    return await _run(db, booking_pk, outcome, work, locks)


async def reallocate_booking(
    db: AsyncSession,
    booking_pk: int,
    locks: BookingLocks = booking_locks,
) -> LedgerOutcome:
    """Replays every acceptance of a booking; used to retry failed allocations."""
    outcome = LedgerOutcome(booking_id=booking_pk, action="reallocate")

    async def work(booking: Booking, outcome: LedgerOutcome):
        if booking.status == "cancelled":
            outcome.skipped = True
            return
        now = utcnow()
        for request in await stores.find_accepted_requests(db, booking.id):
            await _allocate(db, booking, request, now, outcome)

    return await _run(db, booking_pk, outcome, work, locks)


async def reverse_points(
    db: AsyncSession,
    booking_pk: int,
    reason: str | None = None,
    locks: BookingLocks = booking_locks,
) -> LedgerOutcome:
    """Best effort: a failure here must never fail the cancellation itself."""
    outcome = LedgerOutcome(booking_id=booking_pk, action="reverse")

    async def work(booking: Booking, outcome: LedgerOutcome):
        await _reverse(db, booking, reason or DEFAULT_CANCELLATION_REASON, utcnow(), outcome)

    return await _run(db, booking_pk, outcome, work, locks)


# ---- Display & reconciliation ----

@dataclass
class ReconcileReport:
    updated: int = 0
    skipped: int = 0
    balance_changes: list[BalanceChange] = field(default_factory=list)

    @property
    def users_adjusted(self) -> int:
        return len({c.guarantor_id for c in self.balance_changes})


async def points_summary(db: AsyncSession, user_id: int) -> dict:
    """Display-only view; recomputes earned points from active entries."""
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    active = await stores.find_active_points_for_guarantor(db, user_id)
    earned = sum((share_for(e.booking_amount, e.total_guarantors) for e in active), ZERO)
    return {
        "user_id": user_id,
        "balance": to_amount(user.points),
        "total_points_earned": to_amount(user.total_points_earned),
        "active_points": earned,
        "active_bookings": len(active),
    }


async def _reconcile_booking(db: AsyncSession, booking_pk: int, report: ReconcileReport, guarantors: set[int]):
    pending: dict[int, Fraction] = {}

    for entry in await stores.find_points_for_booking(db, booking_pk, for_update=True):
        guarantors.add(entry.guarantor_id)
        exact_pool = pool_for(entry.booking_amount)
        exact_share = share_for(entry.booking_amount, entry.total_guarantors)
        stored_share = to_amount(entry.points_allocated)

        if to_amount(entry.total_pool_amount) == exact_pool and stored_share == exact_share:
            report.skipped += 1
            continue

        entry.total_pool_amount = exact_pool
        entry.points_allocated = exact_share
        entry.updated_at = utcnow()
        report.updated += 1
        logger.info(
            f"[rental-service] reconciled points record {entry.id}: "
            f"{stored_share} -> {exact_share} (booking amount {entry.booking_amount})"
        )
        if entry.status == "active":
            pending[entry.guarantor_id] = pending.get(entry.guarantor_id, ZERO) + (exact_share - stored_share)

    for guarantor_id, delta in pending.items():
        if delta != ZERO:
            report.balance_changes.append(await _move_balance(db, guarantor_id, delta, floor_at_zero=True))


async def reconcile_points(db: AsyncSession, locks: BookingLocks = booking_locks) -> ReconcileReport:
    """
    Rewrites drifted snapshots to their exact values and pushes the
    difference of every active entry into its guarantor's balance.

    Each booking is repaired in its own transaction under the same lock the
    allocation and reversal routines take. Any failure propagates to the
    caller; bookings already committed stay repaired.
    """
    report = ReconcileReport()
    guarantors: set[int] = set()

    for booking_pk in await stores.find_booking_ids_with_points(db):
        async with locks.hold(booking_pk):
            await _reconcile_booking(db, booking_pk, report, guarantors)
            await db.commit()

    for guarantor_id in sorted(guarantors):
        user = await db.get(User, guarantor_id, with_for_update=True, populate_existing=True)
        if user is None:
            continue
        active = await stores.find_active_points_for_guarantor(db, guarantor_id)
        user.total_points_earned = sum(
            (share_for(e.booking_amount, e.total_guarantors) for e in active), ZERO
        )
        await db.commit()

    logger.info(
        f"[rental-service] reconciliation done: updated={report.updated} skipped={report.skipped} "
        f"users={report.users_adjusted}"
    )
    return report
