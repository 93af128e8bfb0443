from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from .amounts import serialize, to_amount, to_display


class TripPoint(BaseModel):
    location: Optional[str] = None
    date: str
    time: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class CreateBookingRequest(BaseModel):
    car_id: int
    trip_start: TripPoint
    trip_end: TripPoint


class UpdateBookingStatus(BaseModel):
    status: str
    cancellation_reason: Optional[str] = None


class SendGuarantorRequest(BaseModel):
    booking_id: str
    guarantor_id: str  # the guarantor's public code


class RejectGuarantorRequest(BaseModel):
    reason: Optional[str] = None


class CarResponse(BaseModel):
    id: int
    brand: str
    model: str
    registration_number: str
    price_per_day: Decimal

    @classmethod
    def from_model(cls, car):
        return cls(
            id=car.id,
            brand=car.brand,
            model=car.model,
            registration_number=car.registration_number,
            price_per_day=to_display(car.price_per_day),
        )


class CarListResponse(BaseModel):
    cars: List[CarResponse]
    count: int
    availability_filtered: bool


class BookingResponse(BaseModel):
    booking_id: str
    status: str
    car_id: int
    user_id: int
    guarantor_id: Optional[int] = None
    trip_start_location: str
    trip_start_date: datetime
    trip_start_time: Optional[str] = None
    trip_end_location: str
    trip_end_date: datetime
    trip_end_time: Optional[str] = None
    total_days: int
    final_price: Decimal
    cancellation_reason: Optional[str] = None
    points_reversal_failed: bool = False

    @classmethod
    def from_model(cls, booking, points_reversal_failed: bool = False):
        return cls(
            booking_id=booking.booking_id,
            status=booking.status,
            car_id=booking.car_id,
            user_id=booking.user_id,
            guarantor_id=booking.guarantor_id,
            trip_start_location=booking.trip_start_location,
            trip_start_date=booking.trip_start_date,
            trip_start_time=booking.trip_start_time,
            trip_end_location=booking.trip_end_location,
            trip_end_date=booking.trip_end_date,
            trip_end_time=booking.trip_end_time,
            total_days=booking.total_days,
            final_price=to_display(booking.final_price),
            cancellation_reason=booking.cancellation_reason,
            points_reversal_failed=points_reversal_failed,
        )


class GuarantorRequestResponse(BaseModel):
    id: int
    booking_id: int
    user_id: int
    guarantor_id: int
    requested_by: str
    status: str
    rejection_reason: Optional[str] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, request):
        return cls(
            id=request.id,
            booking_id=request.booking_id,
            user_id=request.user_id,
            guarantor_id=request.guarantor_id,
            requested_by=request.requested_by,
            status=request.status,
            rejection_reason=request.rejection_reason,
            accepted_at=request.accepted_at,
            rejected_at=request.rejected_at,
        )


class AcceptGuarantorResponse(BaseModel):
    request: GuarantorRequestResponse
    points_allocated: bool


class GuarantorPointsResponse(BaseModel):
    id: int
    guarantor_id: int
    guarantor_request_id: int
    status: str
    total_guarantors: int
    booking_amount: Decimal
    total_pool_amount: Decimal
    points_allocated: Decimal
    # exact value as "n" or "n/d"; the decimals above are rounded for display
    points_allocated_exact: str
    reversal_reason: Optional[str] = None
    reversed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, entry):
        return cls(
            id=entry.id,
            guarantor_id=entry.guarantor_id,
            guarantor_request_id=entry.guarantor_request_id,
            status=entry.status,
            total_guarantors=entry.total_guarantors,
            booking_amount=to_display(entry.booking_amount),
            total_pool_amount=to_display(entry.total_pool_amount),
            points_allocated=to_display(entry.points_allocated),
            points_allocated_exact=serialize(to_amount(entry.points_allocated)),
            reversal_reason=entry.reversal_reason,
            reversed_at=entry.reversed_at,
        )


class BookingPointsResponse(BaseModel):
    booking_id: str
    entries: List[GuarantorPointsResponse]
    active_total: Decimal


class LedgerRunResponse(BaseModel):
    booking_id: str
    ok: bool
    skipped: bool = False
    error: Optional[str] = None


class ReconcileResponse(BaseModel):
    updated: int
    skipped: int
    users_adjusted: int


class PointsSummaryResponse(BaseModel):
    user_id: int
    balance: Decimal
    total_points_earned: Decimal
    active_points: Decimal
    active_bookings: int

    @classmethod
    def from_summary(cls, summary: dict):
        return cls(
            user_id=summary["user_id"],
            balance=to_display(summary["balance"]),
            total_points_earned=to_display(summary["total_points_earned"]),
            active_points=to_display(summary["active_points"]),
            active_bookings=summary["active_bookings"],
        )
