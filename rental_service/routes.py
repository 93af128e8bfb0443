from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import bookings, guarantors, ledger, stores
from .amounts import ZERO, to_amount, to_display
from .availability import find_unavailable_car_ids, search_window
from .db import SessionLocal
from .errors import Forbidden
from .models import Car
from .schemas import (
    AcceptGuarantorResponse,
    BookingPointsResponse,
    BookingResponse,
    CarListResponse,
    CarResponse,
    CreateBookingRequest,
    GuarantorPointsResponse,
    GuarantorRequestResponse,
    LedgerRunResponse,
    PointsSummaryResponse,
    ReconcileResponse,
    RejectGuarantorRequest,
    SendGuarantorRequest,
    UpdateBookingStatus,
)
from .security import get_current_user, is_admin, require_role

router = APIRouter()


async def get_db():
    async with SessionLocal() as session:
        yield session


# ================= CARS =================

@router.get("/cars", response_model=CarListResponse, tags=["Cars"])
async def list_cars(
    start_date: Optional[str] = Query(None, alias="startDate"),
    availability_start: Optional[str] = Query(None, alias="availabilityStart"),
    pickup_date: Optional[str] = Query(None, alias="pickupDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    availability_end: Optional[str] = Query(None, alias="availabilityEnd"),
    dropoff_date: Optional[str] = Query(None, alias="dropoffDate"),
    pickup_time: Optional[str] = Query(None, alias="pickupTime"),
    dropoff_time: Optional[str] = Query(None, alias="dropoffTime"),
    db: AsyncSession = Depends(get_db),
):
    window = search_window(
        start_date or availability_start or pickup_date,
        end_date or availability_end or dropoff_date,
        pickup_time,
        dropoff_time,
    )

    res = await db.execute(
        select(Car).where(Car.status == "active", Car.is_available.is_(True)).order_by(Car.id)
    )
    cars = list(res.scalars().all())

    if window is not None:
        excluded = await find_unavailable_car_ids(db, window)
        cars = [c for c in cars if c.id not in excluded]

    return CarListResponse(
        cars=[CarResponse.from_model(c) for c in cars],
        count=len(cars),
        availability_filtered=window is not None,
    )


# ================= BOOKINGS =================

@router.post("/bookings", response_model=BookingResponse, status_code=201, tags=["Bookings"])
async def create_booking(
    data: CreateBookingRequest,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await bookings.create_booking(db, user["sub"], data)
    return BookingResponse.from_model(booking)


@router.get("/bookings/{booking_id}", response_model=BookingResponse, tags=["Bookings"])
async def get_booking(
    booking_id: str,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await bookings.get_booking(db, booking_id)
    if booking.user_id != user["sub"] and not is_admin(user):
        raise Forbidden("Access denied")
    return BookingResponse.from_model(booking)


@router.patch("/bookings/{booking_id}/status", response_model=BookingResponse, tags=["Bookings"])
async def update_booking_status(
    booking_id: str,
    data: UpdateBookingStatus,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking, outcome = await bookings.update_status(
        db,
        booking_id,
        data.status,
        actor_id=user["sub"],
        is_admin=is_admin(user),
        cancellation_reason=data.cancellation_reason,
    )
    return BookingResponse.from_model(
        booking,
        points_reversal_failed=outcome is not None and not outcome.ok,
    )


# ================= GUARANTORS =================

@router.get("/guarantor-requests", response_model=list[GuarantorRequestResponse], tags=["Guarantors"])
async def my_guarantor_requests(user=Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    requests = await guarantors.list_for_guarantor(db, user["sub"])
    return [GuarantorRequestResponse.from_model(r) for r in requests]


@router.post(
    "/guarantor-requests/{request_id}/accept",
    response_model=AcceptGuarantorResponse,
    tags=["Guarantors"],
)
async def accept_guarantor_request(
    request_id: int,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    request, outcome = await guarantors.accept_request(db, request_id, user["sub"])
    return AcceptGuarantorResponse(
        request=GuarantorRequestResponse.from_model(request),
        points_allocated=outcome.ok and not outcome.skipped,
    )


@router.post(
    "/guarantor-requests/{request_id}/reject",
    response_model=GuarantorRequestResponse,
    tags=["Guarantors"],
)
async def reject_guarantor_request(
    request_id: int,
    data: Optional[RejectGuarantorRequest] = None,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    request = await guarantors.reject_request(db, request_id, user["sub"], data.reason if data else None)
    return GuarantorRequestResponse.from_model(request)


# ================= POINTS =================

@router.get("/users/{user_id}/points", response_model=PointsSummaryResponse, tags=["Points"])
async def user_points(user_id: int, user=Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    if user_id != user["sub"] and not is_admin(user):
        raise Forbidden("Access denied")
    summary = await ledger.points_summary(db, user_id)
    return PointsSummaryResponse.from_summary(summary)


# ================= ADMIN =================

@router.post(
    "/admin/guarantor-requests",
    response_model=GuarantorRequestResponse,
    status_code=201,
    tags=["Admin"],
)
async def admin_send_guarantor_request(
    data: SendGuarantorRequest,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["admin"])
    request = await guarantors.send_request(db, data.booking_id, data.guarantor_id, str(user["sub"]))
    return GuarantorRequestResponse.from_model(request)


@router.get("/admin/guarantor-requests", response_model=list[GuarantorRequestResponse], tags=["Admin"])
async def admin_list_guarantor_requests(
    status: Optional[str] = None,
    booking_id: Optional[str] = Query(None, alias="bookingId"),
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["admin"])
    requests = await guarantors.list_all(db, status=status, booking_id=booking_id)
    return [GuarantorRequestResponse.from_model(r) for r in requests]


@router.get(
    "/admin/bookings/{booking_id}/guarantor-points",
    response_model=BookingPointsResponse,
    tags=["Admin"],
)
async def admin_booking_points(
    booking_id: str,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["admin"])
    booking = await bookings.get_booking(db, booking_id)
    entries = await stores.find_points_for_booking(db, booking.id)
    active_total = sum((to_amount(e.points_allocated) for e in entries if e.status == "active"), ZERO)
    return BookingPointsResponse(
        booking_id=booking.booking_id,
        entries=[GuarantorPointsResponse.from_model(e) for e in entries],
        active_total=to_display(active_total),
    )


@router.post(
    "/admin/bookings/{booking_id}/guarantor-points/recompute",
    response_model=LedgerRunResponse,
    tags=["Admin"],
)
async def admin_recompute_booking_points(
    booking_id: str,
    user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_role(user, ["admin"])
    booking = await bookings.get_booking(db, booking_id)
    outcome = await ledger.reallocate_booking(db, booking.id)
    return LedgerRunResponse(
        booking_id=booking_id,
        ok=outcome.ok,
        skipped=outcome.skipped,
        error=outcome.error.detail if outcome.error else None,
    )


@router.post("/admin/guarantor-points/reconcile", response_model=ReconcileResponse, tags=["Admin"])
async def admin_reconcile_points(user=Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    require_role(user, ["admin"])
    report = await ledger.reconcile_points(db)
    return ReconcileResponse(
        updated=report.updated,
        skipped=report.skipped,
        users_adjusted=report.users_adjusted,
    )
