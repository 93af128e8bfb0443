from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("guarantor_code", sa.String(), nullable=True),
        sa.Column("points", sa.String(64), nullable=False, server_default="0"),
        sa.Column("total_points_earned", sa.String(64), nullable=False, server_default="0"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_guarantor_code", "users", ["guarantor_code"], unique=True)

    op.create_table(
        "cars",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("brand", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("registration_number", sa.String(), nullable=False),
        sa.Column("price_per_day", sa.String(64), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_cars_registration_number", "cars", ["registration_number"], unique=True)
    op.create_index("ix_cars_status", "cars", ["status"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(), nullable=False),
        sa.Column("car_id", sa.Integer(), sa.ForeignKey("cars.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("guarantor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("trip_start_location", sa.String(), nullable=False),
        sa.Column("trip_start_latitude", sa.Float(), nullable=True),
        sa.Column("trip_start_longitude", sa.Float(), nullable=True),
        sa.Column("trip_start_date", sa.DateTime(), nullable=False),
        sa.Column("trip_start_time", sa.String(), nullable=True),
        sa.Column("trip_end_location", sa.String(), nullable=False),
        sa.Column("trip_end_latitude", sa.Float(), nullable=True),
        sa.Column("trip_end_longitude", sa.Float(), nullable=True),
        sa.Column("trip_end_date", sa.DateTime(), nullable=False),
        sa.Column("trip_end_time", sa.String(), nullable=True),
        sa.Column("total_days", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("final_price", sa.String(64), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_bookings_booking_id", "bookings", ["booking_id"], unique=True)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_trip_dates", "bookings", ["trip_start_date", "trip_end_date"], unique=False)
    op.create_index("ix_bookings_car_status", "bookings", ["car_id", "status"], unique=False)

    op.create_table(
        "guarantor_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("guarantor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("requested_by", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "uq_guarantor_requests_pending_pair",
        "guarantor_requests",
        ["booking_id", "guarantor_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index("ix_guarantor_requests_booking_status", "guarantor_requests", ["booking_id", "status"])
    op.create_index("ix_guarantor_requests_guarantor_status", "guarantor_requests", ["guarantor_id", "status"])

    op.create_table(
        "guarantor_points",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("guarantor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("guarantor_request_id", sa.Integer(), sa.ForeignKey("guarantor_requests.id"), nullable=False),
        sa.Column("booking_amount", sa.String(64), nullable=False),
        sa.Column("total_pool_amount", sa.String(64), nullable=False),
        sa.Column("total_guarantors", sa.Integer(), nullable=False),
        sa.Column("points_allocated", sa.String(64), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reversal_reason", sa.String(), nullable=True),
        sa.Column("booking_status_at_allocation", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "total_guarantors >= 1 AND total_guarantors <= 5",
            name="ck_guarantor_points_total_guarantors",
        ),
    )
    op.create_index(
        "uq_guarantor_points_active_pair",
        "guarantor_points",
        ["booking_id", "guarantor_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index("ix_guarantor_points_booking_status", "guarantor_points", ["booking_id", "status"])
    op.create_index("ix_guarantor_points_guarantor_status", "guarantor_points", ["guarantor_id", "status"])

def downgrade():
    op.drop_index("ix_guarantor_points_guarantor_status", table_name="guarantor_points")
    op.drop_index("ix_guarantor_points_booking_status", table_name="guarantor_points")
    op.drop_index("uq_guarantor_points_active_pair", table_name="guarantor_points")
    op.drop_table("guarantor_points")

    op.drop_index("ix_guarantor_requests_guarantor_status", table_name="guarantor_requests")
    op.drop_index("ix_guarantor_requests_booking_status", table_name="guarantor_requests")
    op.drop_index("uq_guarantor_requests_pending_pair", table_name="guarantor_requests")
    op.drop_table("guarantor_requests")

    op.drop_index("ix_bookings_car_status", table_name="bookings")
    op.drop_index("ix_bookings_trip_dates", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_user_id", table_name="bookings")
    op.drop_index("ix_bookings_booking_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_cars_status", table_name="cars")
    op.drop_index("ix_cars_registration_number", table_name="cars")
    op.drop_table("cars")

    op.drop_index("ix_users_guarantor_code", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
