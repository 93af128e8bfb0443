from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)

from .amounts import ExactAmount
from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)
    guarantor_code = Column(String, unique=True, nullable=True, index=True)

    # only the ledger moves these
    points = Column(ExactAmount, nullable=False, default=0)
    total_points_earned = Column(ExactAmount, nullable=False, default=0)


class Car(Base):
    __tablename__ = "cars"

    id = Column(Integer, primary_key=True)
    brand = Column(String, nullable=False)
    model = Column(String, nullable=False)
    registration_number = Column(String, unique=True, nullable=False, index=True)
    price_per_day = Column(ExactAmount, nullable=False)

    status = Column(String, nullable=False, default="active", index=True)  # active/inactive
    is_available = Column(Boolean, nullable=False, default=True)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_trip_dates", "trip_start_date", "trip_end_date"),
        Index("ix_bookings_car_status", "car_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, unique=True, nullable=False, index=True)

    car_id = Column(Integer, ForeignKey("cars.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # legacy single guarantor; ledger entries are the source of truth
    guarantor_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    trip_start_location = Column(String, nullable=False)
    trip_start_latitude = Column(Float, nullable=True)
    trip_start_longitude = Column(Float, nullable=True)
    trip_start_date = Column(DateTime, nullable=False)
    trip_start_time = Column(String, nullable=True)

    trip_end_location = Column(String, nullable=False)
    trip_end_latitude = Column(Float, nullable=True)
    trip_end_longitude = Column(Float, nullable=True)
    trip_end_date = Column(DateTime, nullable=False)
    trip_end_time = Column(String, nullable=True)

    total_days = Column(Integer, nullable=False, default=1)
    final_price = Column(ExactAmount, nullable=False)

    status = Column(String, nullable=False, default="pending", index=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String, nullable=True)  # user/admin
    cancellation_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class GuarantorRequest(Base):
    __tablename__ = "guarantor_requests"
    __table_args__ = (
        Index(
            "uq_guarantor_requests_pending_pair",
            "booking_id",
            "guarantor_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_guarantor_requests_booking_status", "booking_id", "status"),
        Index("ix_guarantor_requests_guarantor_status", "guarantor_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    guarantor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    requested_by = Column(String, nullable=False)

    status = Column(String, nullable=False, default="pending")  # pending/accepted/rejected
    rejection_reason = Column(String, nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class GuarantorPoints(Base):
    __tablename__ = "guarantor_points"
    __table_args__ = (
        CheckConstraint(
            "total_guarantors >= 1 AND total_guarantors <= 5",
            name="ck_guarantor_points_total_guarantors",
        ),
        Index(
            "uq_guarantor_points_active_pair",
            "booking_id",
            "guarantor_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_guarantor_points_booking_status", "booking_id", "status"),
        Index("ix_guarantor_points_guarantor_status", "guarantor_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    guarantor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    guarantor_request_id = Column(Integer, ForeignKey("guarantor_requests.id"), nullable=False)

    booking_amount = Column(ExactAmount, nullable=False)
    total_pool_amount = Column(ExactAmount, nullable=False)
    total_guarantors = Column(Integer, nullable=False)
    points_allocated = Column(ExactAmount, nullable=False)

    status = Column(String, nullable=False, default="active")  # active/reversed/cancelled
    reversed_at = Column(DateTime(timezone=True), nullable=True)
    reversal_reason = Column(String, nullable=True)
    booking_status_at_allocation = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
