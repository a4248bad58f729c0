"""
Commission and VAT calculation.

PLATFORM FEE
============

  base commission = ticket amount x 5%
  VAT             = base commission x 15%
  passenger pays  = ticket amount + base commission + VAT

The operator always receives the full ticket amount. Counter, manual and
replacement sales carry no platform fee (base commission = VAT = 0).

REFERRAL SPLIT
==============

When the purchasing user was referred by an ACTIVE sales person, that sales
person earns a pool of 5% of the platform's base commission. If the sales
person has an ACTIVE recruiter, the pool splits 70/30 (sales person /
recruiter); otherwise the sales person keeps all of it.

ROUNDING
========

All figures are Decimal and every published figure is quantised to cents with
ROUND_HALF_UP. The recruiter receives `pool - direct share`, so allocations
always add up to the pool exactly. Nothing here reads the clock, the database
or configuration: the same inputs always produce the same outputs, which is
what makes settlement retries safe.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

COMMISSION_RATE = Decimal("0.05")
VAT_RATE = Decimal("0.15")
SALES_POOL_RATE = Decimal("0.05")
DIRECT_SHARE_WITH_RECRUITER = Decimal("0.70")

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, str]


def to_money(value: Number) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CommissionBreakdown:
    base_commission: Decimal
    vat: Decimal

    @property
    def total(self) -> Decimal:
        return self.base_commission + self.vat


@dataclass(frozen=True)
class BookingAmounts:
    ticket_total: Decimal  # what the operator receives
    commission: CommissionBreakdown
    total_amount: Decimal  # what the passenger pays


@dataclass(frozen=True)
class CommissionAllocation:
    sales_person_id: int
    tier: str  # DIRECT or RECRUITER
    amount: Decimal


NO_COMMISSION = CommissionBreakdown(base_commission=ZERO, vat=ZERO)


def calculate_commission(ticket_amount: Number) -> CommissionBreakdown:
    """Platform fee on a ticket amount."""
    ticket_amount = Decimal(ticket_amount)
    if ticket_amount < 0:
        raise ValueError("ticket amount cannot be negative")
    base = to_money(ticket_amount * COMMISSION_RATE)
    vat = to_money(base * VAT_RATE)
    return CommissionBreakdown(base_commission=base, vat=vat)


def calculate_booking_amounts(
    ticket_price: Number,
    passenger_count: int,
    counter_sale: bool = False,
) -> BookingAmounts:
    """
    Amounts for a booking of `passenger_count` seats at `ticket_price` each.
    Counter sales skip the platform fee.
    """
    if passenger_count < 1:
        raise ValueError("passenger count must be at least 1")
    ticket_total = to_money(Decimal(ticket_price) * passenger_count)
    commission = NO_COMMISSION if counter_sale else calculate_commission(ticket_total)
    return BookingAmounts(
        ticket_total=ticket_total,
        commission=commission,
        total_amount=ticket_total + commission.total,
    )


def sales_commission_pool(base_commission: Number) -> Decimal:
    return to_money(Decimal(base_commission) * SALES_POOL_RATE)


def split_commission(
    base_commission: Number,
    sales_person_id: Optional[int],
    recruiter_id: Optional[int] = None,
) -> list[CommissionAllocation]:
    """
    Referral allocations for one booking.

    `sales_person_id` / `recruiter_id` must already be filtered to ACTIVE
    beneficiaries; pass None when there is none. A zero pool yields no rows.
    """
    if sales_person_id is None:
        return []

    pool = sales_commission_pool(base_commission)
    if pool <= 0:
        return []

    if recruiter_id is None or recruiter_id == sales_person_id:
        return [CommissionAllocation(sales_person_id, "DIRECT", pool)]

    direct = to_money(pool * DIRECT_SHARE_WITH_RECRUITER)
    allocations = [CommissionAllocation(sales_person_id, "DIRECT", direct)]
    recruiter_cut = pool - direct
    if recruiter_cut > 0:
        allocations.append(CommissionAllocation(recruiter_id, "RECRUITER", recruiter_cut))
    return allocations
