"""
Payment settlement.

STATE MACHINE
=============

  Booking PENDING --(payment SUCCESS)--> PAID       tickets issued, referral
                                                    commissions recorded
  Booking PENDING --(payment FAILED)---> CANCELLED  seats released back to
                                                    the trip ledger

Each transition and its consequences commit in ONE transaction: there is no
observable state where a booking is PAID without tickets, or CANCELLED while
still holding seats.

IDEMPOTENCY
===========

The payment's transaction id is the idempotency key.

- Demo payments use the deterministic id DEMO-{booking_id}; paying an already
  paid booking returns the existing payment.
- Provider webhooks are matched to the stored Payment by transactionId. A
  payment that already left PENDING is acknowledged as "Already processed"
  without touching anything, so provider retries are harmless.

Lock order is always trip row first, then payment row, the same order used by
booking cancellation, so the two paths cannot deadlock.

WEBHOOK CHECKS (before any state change)
========================================

  1. source address in TELEBIRR_WEBHOOK_IPS, when an allowlist is configured
  2. HMAC-SHA256 signature over the sorted parameters
  3. timestamp within WEBHOOK_MAX_AGE_SECONDS (replay window)
  4. for SUCCESS, the paid amount equals the stored payment amount
"""

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from busbooking.core.config import get_settings
from busbooking.core.exceptions import (
    AccessDenied,
    AmountMismatch,
    BookingNotPayable,
    InvalidSignature,
    NotFound,
    ValidationFailed,
    WebhookExpired,
)
from busbooking.core.logging import get_logger
from busbooking.core.metrics import record_settlement, webhook_rejections
from busbooking.core.security import Actor
from busbooking.db.session import Database
from busbooking.infrastructure.telebirr import TelebirrClient, get_telebirr_client, verify_signature
from busbooking.models.booking import Booking, BookingStatus
from busbooking.models.payment import Payment, PaymentMethod, PaymentStatus
from busbooking.models.sales import SalesCommission, SalesPerson, SalesReferral, SalesStatus
from busbooking.models.trip import Trip, TripStatus
from busbooking.models.user import User
from busbooking.schemas.audit import PaymentFailed, PaymentSucceeded
from busbooking.schemas.payment import PaymentResponse, PaymentResult, TelebirrCallback, WebhookAck
from busbooking.services.booking_service import load_booking
from busbooking.services.commission import CommissionAllocation, calculate_booking_amounts, split_commission
from busbooking.services.effects import SideEffects, dispatch_side_effects
from busbooking.services.seat_ledger import SeatLedger
from busbooking.services.ticket_service import issue_tickets

logger = get_logger(__name__)

PAID_STATUSES = (BookingStatus.PAID, BookingStatus.CONFIRMED)


def _result(message: str, booking: Booking, payment: Payment) -> PaymentResult:
    return PaymentResult(
        message=message,
        booking_id=booking.id,
        booking_status=booking.status,
        payment=PaymentResponse.model_validate(payment),
        ticket_codes=[ticket.short_code for ticket in booking.tickets],
    )


def verify_booking_amounts(booking: Booking, trip: Trip) -> None:
    """Recompute the booking's amounts from the current trip price; never trust stored figures."""
    expected = calculate_booking_amounts(trip.price, booking.seat_count, counter_sale=booking.is_quick_ticket)
    stored = (booking.total_amount, booking.commission, booking.commission_vat)
    fresh = (expected.total_amount, expected.commission.base_commission, expected.commission.vat)
    if stored != fresh:
        logger.warning(
            "booking_amount_mismatch",
            booking_id=booking.id,
            trip_id=trip.id,
            stored=[str(v) for v in stored],
            expected=[str(v) for v in fresh],
        )
        raise AmountMismatch(
            "Booking amount no longer matches the trip price. Please review your booking and try again."
        )


async def _get_payable_booking(db: AsyncSession, booking_id: int, actor: Actor) -> Booking:
    booking = await load_booking(db, booking_id)
    if booking is None or booking.user_id != actor.user_id:
        raise NotFound(f"Booking {booking_id} not found")
    return booking


def _ensure_payable(booking: Booking, trip: Trip) -> None:
    if booking.status != BookingStatus.PENDING:
        raise BookingNotPayable(f"Booking {booking.id} is {booking.status.lower()} and cannot be paid")
    if trip.status not in TripStatus.SELLABLE:
        raise BookingNotPayable(f"Trip {trip.id} is {trip.status.lower()}; booking can no longer be paid")


def _pending_provider_payment(booking: Booking) -> Optional[Payment]:
    return next(
        (p for p in booking.payments if p.method == PaymentMethod.TELEBIRR and p.status == PaymentStatus.PENDING),
        None,
    )


async def record_sales_commissions(db: AsyncSession, booking: Booking) -> list[CommissionAllocation]:
    """Ledger rows for the referral split of a booking that just got paid."""
    referral = (
        await db.execute(
            select(SalesReferral).where(
                SalesReferral.user_id == booking.user_id,
                SalesReferral.status == SalesStatus.ACTIVE,
            )
        )
    ).scalar_one_or_none()
    if referral is None:
        return []

    sales_person = await db.get(SalesPerson, referral.sales_person_id)
    if sales_person is None or sales_person.status != SalesStatus.ACTIVE:
        return []

    recruiter_id = None
    if sales_person.recruiter_id is not None:
        recruiter = await db.get(SalesPerson, sales_person.recruiter_id)
        if recruiter is not None and recruiter.status == SalesStatus.ACTIVE:
            recruiter_id = recruiter.id

    allocations = split_commission(booking.commission, sales_person.id, recruiter_id)
    ticket_amount = booking.total_amount - booking.commission - booking.commission_vat
    for allocation in allocations:
        db.add(
            SalesCommission(
                booking_id=booking.id,
                sales_person_id=allocation.sales_person_id,
                tier=allocation.tier,
                ticket_amount=ticket_amount,
                platform_commission=booking.commission,
                amount=allocation.amount,
            )
        )
    if allocations:
        logger.info(
            "sales_commissions_recorded",
            booking_id=booking.id,
            allocations=[(a.sales_person_id, a.tier, str(a.amount)) for a in allocations],
        )
    return allocations


async def settle_success(
    db: AsyncSession,
    effects: SideEffects,
    booking: Booking,
    payment: Payment,
    trip: Trip,
) -> None:
    """PENDING -> PAID. Caller holds the trip lock."""
    booking.status = BookingStatus.PAID
    payment.status = PaymentStatus.SUCCESS
    tickets = await issue_tickets(db, booking)
    await record_sales_commissions(db, booking)

    codes = [ticket.short_code for ticket in tickets]
    effects.audit(
        PaymentSucceeded(
            actor=str(booking.user_id),
            trip_id=trip.id,
            booking_id=booking.id,
            transaction_id=payment.transaction_id,
            method=payment.method,
            amount=payment.amount,
            ticket_codes=codes,
        )
    )
    effects.notify(
        booking.user_id,
        f"Payment received. Your trip {trip.origin} -> {trip.destination} on "
        f"{trip.departure_time:%Y-%m-%d %H:%M} is confirmed. Ticket code(s): {', '.join(codes)}",
    )
    effects.touch_trip(trip.id)
    logger.info(
        "payment_settled",
        booking_id=booking.id,
        transaction_id=payment.transaction_id,
        method=payment.method,
        tickets=len(codes),
    )


async def settle_failure(
    ledger: SeatLedger,
    effects: SideEffects,
    booking: Booking,
    payment: Payment,
    trip: Trip,
    reason: str,
) -> int:
    """PENDING -> CANCELLED with the seat release in the same transaction."""
    payment.status = PaymentStatus.FAILED
    booking.status = BookingStatus.CANCELLED
    released = await ledger.release(trip, booking.seat_count)

    effects.audit(
        PaymentFailed(
            actor=str(booking.user_id),
            trip_id=trip.id,
            booking_id=booking.id,
            transaction_id=payment.transaction_id,
            seats_released=released,
            reason=reason,
        )
    )
    effects.notify(
        booking.user_id,
        f"Payment failed for your trip {trip.origin} -> {trip.destination}. "
        f"Your booking was cancelled and {released} seat(s) were released. You can book again.",
    )
    logger.info(
        "payment_failed_booking_cancelled",
        booking_id=booking.id,
        transaction_id=payment.transaction_id,
        seats_released=released,
        reason=reason,
    )
    return released


async def settle_demo_payment(database: Database, actor: Actor, booking_id: int) -> PaymentResult:
    """Synchronous payment used in demo mode; settles immediately."""
    effects = SideEffects()
    async with database.transaction() as db:
        booking = await _get_payable_booking(db, booking_id, actor)
        ledger = SeatLedger(db, effects)
        trip = await ledger.lock_trip(booking.trip_id)
        booking = await load_booking(db, booking_id)

        existing = next((p for p in booking.payments if p.status == PaymentStatus.SUCCESS), None)
        if booking.status in PAID_STATUSES and existing is not None:
            logger.info("payment_already_processed", booking_id=booking.id, transaction_id=existing.transaction_id)
            record_settlement("demo", "replayed")
            return _result("Already processed", booking, existing)

        _ensure_payable(booking, trip)
        verify_booking_amounts(booking, trip)

        payment = Payment(
            booking_id=booking.id,
            amount=booking.total_amount,
            method=PaymentMethod.DEMO,
            transaction_id=f"DEMO-{booking.id}",
            status=PaymentStatus.PENDING,
        )
        booking.payments.append(payment)
        await db.flush()
        await settle_success(db, effects, booking, payment, trip)
        await db.flush()

        booking = await load_booking(db, booking_id)
        result = _result("Payment successful", booking, payment)

    record_settlement("demo", "success")
    await dispatch_side_effects(database, effects)
    return result


async def initiate_provider_payment(
    database: Database,
    actor: Actor,
    booking_id: int,
    phone: Optional[str] = None,
    client: Optional[TelebirrClient] = None,
) -> PaymentResult:
    """
    Ask TeleBirr to push a payment request to the customer's phone and record
    a PENDING payment. Settlement happens later in the webhook.

    The provider call runs between two short transactions so no seat lock is
    held while waiting on the network. Both transactions lock the trip row
    and check for an existing PENDING payment, so concurrent initiations for
    one booking store a single payment.
    """
    client = client or get_telebirr_client()

    async with database.transaction() as db:
        booking = await _get_payable_booking(db, booking_id, actor)
        trip = await SeatLedger(db, SideEffects()).lock_trip(booking.trip_id)
        _ensure_payable(booking, trip)
        verify_booking_amounts(booking, trip)

        pending = _pending_provider_payment(booking)
        if pending is not None:
            logger.info("payment_already_initiated", booking_id=booking.id, transaction_id=pending.transaction_id)
            return _result("Payment already initiated. Approve it on your phone.", booking, pending)

        if phone is None:
            user = await db.get(User, booking.user_id)
            phone = user.phone if user is not None else ""
        amount = booking.total_amount

    transaction_id = await client.initiate_payment(
        phone=phone,
        amount=amount,
        reference=f"booking_{booking_id}",
        description=f"Bus ticket {trip.origin} -> {trip.destination}",
    )

    async with database.transaction() as db:
        trip = await SeatLedger(db, SideEffects()).lock_trip(trip.id)
        booking = await load_booking(db, booking_id)
        _ensure_payable(booking, trip)

        pending = _pending_provider_payment(booking)
        if pending is not None:
            # Another initiation stored its payment while we waited on the provider
            logger.warning(
                "payment_initiation_superseded",
                booking_id=booking.id,
                transaction_id=pending.transaction_id,
                discarded_transaction_id=transaction_id,
            )
            return _result("Payment already initiated. Approve it on your phone.", booking, pending)

        payment = Payment(
            booking_id=booking.id,
            amount=amount,
            method=PaymentMethod.TELEBIRR,
            transaction_id=transaction_id,
            status=PaymentStatus.PENDING,
        )
        booking.payments.append(payment)
        await db.flush()
        result = _result("Payment initiated. Approve it on your phone.", booking, payment)

    logger.info("payment_initiated", booking_id=booking_id, transaction_id=transaction_id, amount=str(amount))
    return result


def _check_freshness(timestamp: datetime, now: datetime, max_age: int) -> None:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    age = (now - timestamp).total_seconds()
    if abs(age) > max_age:
        webhook_rejections.labels(reason="expired").inc()
        logger.warning("webhook_rejected", reason="expired", age_s=round(age, 1))
        raise WebhookExpired("Callback timestamp is outside the accepted window")


async def handle_telebirr_callback(
    database: Database,
    payload: Mapping[str, Any],
    now: Optional[datetime] = None,
    source_ip: Optional[str] = None,
) -> WebhookAck:
    settings = get_settings()

    allowed_ips = {ip.strip() for ip in settings.TELEBIRR_WEBHOOK_IPS.split(",") if ip.strip()}
    if allowed_ips and source_ip not in allowed_ips:
        webhook_rejections.labels(reason="ip").inc()
        logger.warning("webhook_rejected", reason="ip", source_ip=source_ip)
        raise AccessDenied("Unauthorized IP address")

    if not verify_signature(payload, payload.get("signature"), settings.TELEBIRR_APP_KEY):
        webhook_rejections.labels(reason="signature").inc()
        logger.warning("webhook_rejected", reason="signature", out_trade_no=payload.get("outTradeNo"))
        raise InvalidSignature("Invalid signature")

    try:
        callback = TelebirrCallback.model_validate(payload)
    except ValidationError as e:
        webhook_rejections.labels(reason="malformed").inc()
        raise ValidationFailed("Malformed callback payload") from e

    _check_freshness(callback.timestamp, now or datetime.now(timezone.utc), settings.WEBHOOK_MAX_AGE_SECONDS)

    effects = SideEffects()
    outcome = "success"
    async with database.transaction() as db:
        located = (
            await db.execute(
                select(Payment.booking_id, Booking.trip_id)
                .join(Booking, Payment.booking_id == Booking.id)
                .where(Payment.transaction_id == callback.transaction_id)
            )
        ).first()
        if located is None:
            webhook_rejections.labels(reason="not_found").inc()
            logger.warning("webhook_rejected", reason="not_found", transaction_id=callback.transaction_id)
            raise NotFound("Payment not found")

        ledger = SeatLedger(db, effects)
        trip = await ledger.lock_trip(located.trip_id)
        payment = (
            await db.execute(
                select(Payment)
                .where(Payment.transaction_id == callback.transaction_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one()

        if payment.status != PaymentStatus.PENDING:
            record_settlement("webhook", "replayed")
            logger.info(
                "webhook_replayed",
                transaction_id=payment.transaction_id,
                payment_status=payment.status,
            )
            return WebhookAck(message="Already processed")

        booking = await load_booking(db, located.booking_id)

        if callback.status.upper() == "SUCCESS":
            if callback.amount != payment.amount:
                webhook_rejections.labels(reason="amount").inc()
                logger.warning(
                    "webhook_rejected",
                    reason="amount",
                    transaction_id=payment.transaction_id,
                    paid=str(callback.amount),
                    expected=str(payment.amount),
                )
                raise AmountMismatch("Paid amount does not match the payment amount")

            if booking.status != BookingStatus.PENDING:
                # Booking was cancelled or paid another way while the provider was working
                payment.status = PaymentStatus.FAILED
                outcome = "orphaned"
                logger.warning(
                    "webhook_booking_not_pending",
                    transaction_id=payment.transaction_id,
                    booking_id=booking.id,
                    booking_status=booking.status,
                )
                message = "Booking no longer pending"
            else:
                await settle_success(db, effects, booking, payment, trip)
                message = "Payment processed"
        else:
            outcome = "failed"
            if booking.status == BookingStatus.PENDING:
                await settle_failure(ledger, effects, booking, payment, trip, reason=callback.status)
            else:
                payment.status = PaymentStatus.FAILED
            message = "Payment failure recorded"

    record_settlement("webhook", outcome)
    await dispatch_side_effects(database, effects)
    return WebhookAck(message=message)


async def pay_booking(
    database: Database,
    actor: Actor,
    booking_id: int,
    method: str,
    phone: Optional[str] = None,
) -> PaymentResult:
    if method == PaymentMethod.DEMO:
        if not get_settings().PAYMENT_DEMO_MODE:
            raise BookingNotPayable("Demo payments are disabled")
        return await settle_demo_payment(database, actor, booking_id)
    return await initiate_provider_payment(database, actor, booking_id, phone=phone)
