"""
Guarantor request lifecycle: pending -> accepted | rejected, nothing else.

Acceptance is committed on its own before the ledger runs, so a ledger
failure leaves the request accepted and the allocation retryable.
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import stores
from .config import DEFAULT_REJECTION_REASON, MAX_GUARANTORS
from .errors import Conflict, InvalidInput, NotFound
from .ledger import LedgerOutcome, allocate_points
from .models import Booking, GuarantorRequest, User, utcnow
from .rabbitmq import publisher

logger = logging.getLogger(__name__)


async def send_request(
    db: AsyncSession,
    booking_id: str,
    guarantor_code: str,
    requested_by: str,
) -> GuarantorRequest:
    code = (guarantor_code or "").strip()
    if not code:
        raise InvalidInput("Invalid guarantor ID format")

    booking = await stores.get_booking_by_reference(db, booking_id)
    if not booking:
        raise NotFound("Booking not found with the provided ID")
    if booking.status == "cancelled":
        raise InvalidInput("Cannot request a guarantor for a cancelled booking")

    res = await db.execute(select(User).where(User.guarantor_code == code))
    guarantor = res.scalar_one_or_none()
    if not guarantor:
        raise NotFound("Guarantor not found with this ID")

    if guarantor.id == booking.user_id:
        raise InvalidInput("A user cannot be their own guarantor")

    if await stores.find_pending_request(db, booking.id, guarantor.id):
        raise Conflict("A pending request already exists for this booking and guarantor")

    if await stores.count_open_guarantors(db, booking.id) >= MAX_GUARANTORS:
        raise Conflict(f"Booking already has {MAX_GUARANTORS} accepted or invited guarantors")

    request = GuarantorRequest(
        booking_id=booking.id,
        user_id=booking.user_id,
        guarantor_id=guarantor.id,
        requested_by=requested_by,
        status="pending",
    )
    db.add(request)
    try:
        await db.commit()
    except IntegrityError:
        # lost a race with a concurrent request for the same pair
        await db.rollback()
        raise Conflict("A pending request already exists for this booking and guarantor")

    logger.info(f"[rental-service] guarantor request {request.id} sent for booking {booking.booking_id}")
    await publisher.emit(
        "guarantor.requested",
        {"request_id": request.id, "booking_id": booking.booking_id, "guarantor_id": guarantor.id},
    )
    return request


async def _pending_for(db: AsyncSession, request_id: int, guarantor_id: int) -> GuarantorRequest:
    res = await db.execute(
        select(GuarantorRequest).where(
            GuarantorRequest.id == request_id,
            GuarantorRequest.guarantor_id == guarantor_id,
            GuarantorRequest.status == "pending",
        )
    )
    request = res.scalar_one_or_none()
    if not request:
        raise NotFound("Guarantor request not found or already processed")
    return request


async def accept_request(
    db: AsyncSession,
    request_id: int,
    guarantor_id: int,
) -> tuple[GuarantorRequest, LedgerOutcome]:
    request = await _pending_for(db, request_id, guarantor_id)

    booking = await db.get(Booking, request.booking_id)
    if not booking:
        raise NotFound("Booking not found")
    if booking.status == "cancelled":
        raise InvalidInput("Cannot accept a guarantor request for a cancelled booking")
    if await stores.count_accepted_guarantors(db, booking.id) >= MAX_GUARANTORS:
        raise Conflict(f"Booking already has {MAX_GUARANTORS} accepted guarantors")

    request.status = "accepted"
    request.accepted_at = utcnow()
    booking.guarantor_id = guarantor_id
    await db.commit()

    # a failed ledger run rolls the session back and expires these objects
    booking_pk, reference = booking.id, booking.booking_id

    outcome = await allocate_points(db, booking_pk, request_id)
    if not outcome.ok:
        # acceptance stands; allocation can be retried from the admin side
        logger.error(
            f"[rental-service] request {request_id} accepted but points allocation failed: {outcome.error.detail}"
        )
        await db.refresh(request)
        await db.refresh(booking)

    await publisher.emit(
        "guarantor.accepted",
        {"request_id": request_id, "booking_id": reference, "guarantor_id": guarantor_id},
    )
    if outcome.ok and outcome.changes:
        await publisher.emit(
            "guarantor_points.allocated",
            {
                "booking_id": reference,
                "changes": [{"guarantor_id": c.guarantor_id, "delta": c.delta} for c in outcome.changes],
            },
        )
    return request, outcome


async def reject_request(
    db: AsyncSession,
    request_id: int,
    guarantor_id: int,
    reason: str | None = None,
) -> GuarantorRequest:
    request = await _pending_for(db, request_id, guarantor_id)

    request.status = "rejected"
    request.rejection_reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
    request.rejected_at = utcnow()
    await db.commit()

    await publisher.emit(
        "guarantor.rejected",
        {"request_id": request.id, "guarantor_id": guarantor_id, "reason": request.rejection_reason},
    )
    return request


async def list_for_guarantor(db: AsyncSession, guarantor_id: int) -> list[GuarantorRequest]:
    res = await db.execute(
        select(GuarantorRequest)
        .where(GuarantorRequest.guarantor_id == guarantor_id)
        .order_by(GuarantorRequest.created_at.desc(), GuarantorRequest.id.desc())
    )
    return list(res.scalars().all())


async def list_all(
    db: AsyncSession,
    status: str | None = None,
    booking_id: str | None = None,
) -> list[GuarantorRequest]:
    stmt = select(GuarantorRequest)
    if status and status != "all":
        stmt = stmt.where(GuarantorRequest.status == status)
    if booking_id:
        booking = await stores.get_booking_by_reference(db, booking_id)
        if not booking:
            return []
        stmt = stmt.where(GuarantorRequest.booking_id == booking.id)
    res = await db.execute(stmt.order_by(GuarantorRequest.created_at.desc(), GuarantorRequest.id.desc()))
    return list(res.scalars().all())
