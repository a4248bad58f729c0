"""Initial schema: companies, trips, bookings, passengers, tickets, payments, sales ledger, audit.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("disable_auto_halt_globally", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_companies_id", "companies", ["id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'CUSTOMER'")),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_phone", "users", ["phone"], unique=True)
    op.create_index("ix_users_company_id", "users", ["company_id"])

    op.create_table(
        "trips",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("origin", sa.String(120), nullable=False),
        sa.Column("destination", sa.String(120), nullable=False),
        sa.Column("departure_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_slots", sa.Integer(), nullable=False),
        sa.Column("available_slots", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'SCHEDULED'")),
        sa.Column("booking_halted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("low_slot_alert_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("admin_resumed_from_auto_halt", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("auto_resume_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("manifest_ready", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("no_show_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("released_seats", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("replacements_sold", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("total_slots > 0", name="check_trip_total_slots_positive"),
        sa.CheckConstraint("available_slots >= 0", name="check_trip_available_non_negative"),
        sa.CheckConstraint("available_slots <= total_slots", name="check_trip_available_lte_total"),
        sa.CheckConstraint("released_seats >= 0", name="check_trip_released_non_negative"),
        sa.CheckConstraint("price >= 0", name="check_trip_price_non_negative"),
        sa.CheckConstraint(
            "status IN ('SCHEDULED', 'BOARDING', 'DEPARTED', 'COMPLETED', 'CANCELLED')",
            name="check_trip_status",
        ),
    )
    op.create_index("ix_trips_id", "trips", ["id"])
    op.create_index("ix_trips_company_id", "trips", ["company_id"])
    # Trip listings are always filtered or sorted by departure
    op.create_index("ix_trips_departure_time", "trips", ["departure_time"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer(), sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("commission_vat", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("is_quick_ticket", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_replacement", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("replaced_passenger_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('PENDING', 'PAID', 'CONFIRMED', 'CANCELLED')",
            name="check_booking_status",
        ),
        sa.CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_trip_id", "bookings", ["trip_id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    # One open booking per customer and trip; settled and cancelled rows are history
    op.create_index(
        "uq_pending_booking_per_user_trip",
        "bookings",
        ["user_id", "trip_id"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "passengers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("national_id", sa.String(64), nullable=False, server_default=sa.text("''")),
        sa.Column("phone", sa.String(32), nullable=False, server_default=sa.text("''")),
        sa.Column("special_needs", sa.String(255), nullable=True),
        sa.Column("seat_number", sa.Integer(), nullable=True),
        sa.Column("boarding_status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        *_timestamps(),
        sa.CheckConstraint("seat_number IS NULL OR seat_number > 0", name="check_passenger_seat_positive"),
        sa.CheckConstraint(
            "boarding_status IN ('PENDING', 'BOARDED', 'NO_SHOW')",
            name="check_passenger_boarding_status",
        ),
    )
    op.create_index("ix_passengers_id", "passengers", ["id"])
    op.create_index("ix_passengers_booking_id", "passengers", ["booking_id"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("trip_id", sa.Integer(), sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("passenger_id", sa.Integer(), sa.ForeignKey("passengers.id"), nullable=False, unique=True),
        sa.Column("passenger_name", sa.String(255), nullable=False),
        sa.Column("seat_number", sa.Integer(), nullable=True),
        sa.Column("short_code", sa.String(16), nullable=False),
        sa.Column("qr_code", sa.Text(), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_tickets_id", "tickets", ["id"])
    op.create_index("ix_tickets_booking_id", "tickets", ["booking_id"])
    op.create_index("ix_tickets_trip_id", "tickets", ["trip_id"])
    op.create_index("ix_tickets_short_code", "tickets", ["short_code"], unique=True)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", sa.String(20), nullable=False),
        sa.Column("transaction_id", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        *_timestamps(),
        sa.CheckConstraint("status IN ('PENDING', 'SUCCESS', 'FAILED')", name="check_payment_status"),
        sa.CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
    )
    op.create_index("ix_payments_id", "payments", ["id"])
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    # Webhook idempotency key
    op.create_index("ix_payments_transaction_id", "payments", ["transaction_id"], unique=True)
    op.create_index(
        "uq_successful_payment_per_booking",
        "payments",
        ["booking_id"],
        unique=True,
        postgresql_where=sa.text("status = 'SUCCESS'"),
    )

    op.create_table(
        "sales_persons",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("referral_code", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("recruiter_id", sa.Integer(), sa.ForeignKey("sales_persons.id"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sales_persons_id", "sales_persons", ["id"])
    op.create_index("ix_sales_persons_referral_code", "sales_persons", ["referral_code"], unique=True)

    op.create_table(
        "sales_referrals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("sales_person_id", sa.Integer(), sa.ForeignKey("sales_persons.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'ACTIVE'")),
        *_timestamps(),
    )
    op.create_index("ix_sales_referrals_id", "sales_referrals", ["id"])
    op.create_index("ix_sales_referrals_sales_person_id", "sales_referrals", ["sales_person_id"])

    op.create_table(
        "sales_commissions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("sales_person_id", sa.Integer(), sa.ForeignKey("sales_persons.id"), nullable=False),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("ticket_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("platform_commission", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        *_timestamps(),
        sa.UniqueConstraint("booking_id", "sales_person_id", name="uq_commission_booking_beneficiary"),
    )
    op.create_index("ix_sales_commissions_id", "sales_commissions", ["id"])
    op.create_index("ix_sales_commissions_booking_id", "sales_commissions", ["booking_id"])
    op.create_index("ix_sales_commissions_sales_person_id", "sales_commissions", ["sales_person_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor", sa.String(64), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("trip_id", sa.Integer(), sa.ForeignKey("trips.id"), nullable=True),
        sa.Column("details", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_audit_logs_id", "audit_logs", ["id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_trip_id", "audit_logs", ["trip_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_notifications_id", "notifications", ["id"])
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("audit_logs")
    op.drop_table("sales_commissions")
    op.drop_table("sales_referrals")
    op.drop_table("sales_persons")
    op.drop_table("payments")
    op.drop_table("tickets")
    op.drop_table("passengers")
    op.drop_table("bookings")
    op.drop_table("trips")
    op.drop_table("users")
    op.drop_table("companies")
