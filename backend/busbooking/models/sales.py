"""
Referral hierarchy and the commission ledger it produces.

- SalesPerson: field agent with an optional recruiter (one level up)
- SalesReferral: binds a customer to the sales person who referred them
- SalesCommission: one row per (booking, beneficiary), written only when the
  booking's payment succeeds; only `status` changes afterwards (payout)
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, UniqueConstraint

from busbooking.db.base import Base, TimestampMixin


class SalesStatus:
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class CommissionTier:
    DIRECT = "DIRECT"
    RECRUITER = "RECRUITER"


class PayoutStatus:
    PENDING = "PENDING"
    PAID = "PAID"


class SalesPerson(Base, TimestampMixin):
    __tablename__ = "sales_persons"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    referral_code = Column(String(20), nullable=False, unique=True, index=True)
    status = Column(String(20), nullable=False, default=SalesStatus.ACTIVE)
    recruiter_id = Column(Integer, ForeignKey("sales_persons.id"), nullable=True)

    def __repr__(self) -> str:
        return f"<SalesPerson(id={self.id}, code={self.referral_code}, status={self.status})>"


class SalesReferral(Base, TimestampMixin):
    __tablename__ = "sales_referrals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    sales_person_id = Column(Integer, ForeignKey("sales_persons.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=SalesStatus.ACTIVE)


class SalesCommission(Base, TimestampMixin):
    __tablename__ = "sales_commissions"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    sales_person_id = Column(Integer, ForeignKey("sales_persons.id"), nullable=False, index=True)
    tier = Column(String(20), nullable=False)
    ticket_amount = Column(Numeric(12, 2), nullable=False)
    platform_commission = Column(Numeric(12, 2), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=PayoutStatus.PENDING)

    __table_args__ = (
        UniqueConstraint("booking_id", "sales_person_id", name="uq_commission_booking_beneficiary"),
    )

    def __repr__(self) -> str:
        return f"<SalesCommission(booking={self.booking_id}, beneficiary={self.sales_person_id}, amount={self.amount})>"
