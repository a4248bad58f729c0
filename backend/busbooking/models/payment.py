"""
Payment: one attempt to settle a booking.

Key design decisions:
- `transaction_id` is unique and is the idempotency key for provider webhooks
- Partial unique index guarantees at most one SUCCESS payment per booking
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, Index, CheckConstraint, text
from sqlalchemy.orm import relationship

from busbooking.db.base import Base, TimestampMixin


class PaymentStatus:
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PaymentMethod:
    DEMO = "DEMO"
    TELEBIRR = "TELEBIRR"
    CASH = "CASH"


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(20), nullable=False)
    transaction_id = Column(String(100), nullable=False, unique=True, index=True)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)

    booking = relationship("Booking", back_populates="payments")

    __table_args__ = (
        Index(
            "uq_successful_payment_per_booking",
            "booking_id",
            unique=True,
            postgresql_where=text("status = 'SUCCESS'"),
            sqlite_where=text("status = 'SUCCESS'"),
        ),
        CheckConstraint("status IN ('PENDING', 'SUCCESS', 'FAILED')", name="check_payment_status"),
        CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, txn={self.transaction_id}, status={self.status})>"
