"""Booking refunds on cancellation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from django.db import DatabaseError
from django.utils import timezone

from bookings.models import BookingRequest
from core.exceptions import (
    BookingNotFound,
    InvalidBookingState,
    NotAuthorized,
    Unauthenticated,
    ValidationFailed,
)
from core.steps import StepLogger
from notifications import tasks as notification_tasks
from notifications.dispatch import enqueue
from notifications.models import Notification
from users.models import is_admin

from .fees import cents_to_dollars, parse_amount, to_cents
from .payouts import booking_refund_key
from .stripe_api import PaymentGateway, RefundResult, get_payment_gateway

logger = logging.getLogger(__name__)
log_step = StepLogger("PROCESS-REFUND", logger)

REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")
INITIATORS = ("shopper", "host", "admin")


@dataclass(frozen=True)
class RefundRequest:
    booking_id: int
    initiated_by: str
    reason: str = "requested_by_customer"
    refund_amount: Decimal | None = None
    cancellation_reason: str = ""

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "RefundRequest":
        booking_id = data.get("booking_id")
        if booking_id in (None, ""):
            raise ValidationFailed("Missing required field: booking_id")
        try:
            booking_id = int(booking_id)
        except (TypeError, ValueError):
            raise ValidationFailed("booking_id must be an integer.")

        reason = data.get("reason") or "requested_by_customer"
        if reason not in REFUND_REASONS:
            raise ValidationFailed(f"reason must be one of: {', '.join(REFUND_REASONS)}")

        initiated_by = data.get("initiated_by")
        if initiated_by not in INITIATORS:
            raise ValidationFailed(f"initiated_by must be one of: {', '.join(INITIATORS)}")

        refund_amount = None
        if data.get("refund_amount") not in (None, ""):
            refund_amount = parse_amount(data["refund_amount"], "refund_amount", allow_zero=False)

        return cls(
            booking_id=booking_id,
            initiated_by=initiated_by,
            reason=reason,
            refund_amount=refund_amount,
            cancellation_reason=(data.get("cancellation_reason") or "").strip(),
        )


@dataclass(frozen=True)
class RefundOutcome:
    booking_id: int
    refund: RefundResult

    def as_response(self) -> dict[str, Any]:
        return {
            "refund_id": self.refund.id,
            "refund_status": self.refund.status,
            "refund_amount": float(cents_to_dollars(self.refund.amount_cents)),
            "booking_status": BookingRequest.Status.CANCELLED,
            "payment_status": BookingRequest.PaymentStatus.REFUNDED,
        }


def process_refund(
    user,
    payload: Mapping[str, Any],
    *,
    gateway: PaymentGateway | None = None,
) -> RefundOutcome:
    """
    Refund a paid booking in full or in part and cancel it.

    A partial ``refund_amount`` is sent to the processor as given, even above
    the booking's total_price; the processor enforces the charge bound.
    """
    if user is None or not getattr(user, "is_authenticated", False):
        raise Unauthenticated()
    log_step("User authenticated", {"user_id": user.pk})

    request = RefundRequest.from_payload(payload)
    log_step(
        "Request received",
        {
            "booking_id": request.booking_id,
            "reason": request.reason,
            "refund_amount": request.refund_amount,
            "initiated_by": request.initiated_by,
        },
    )

    booking = (
        BookingRequest.objects.select_related("listing").filter(pk=request.booking_id).first()
    )
    if booking is None:
        raise BookingNotFound()
    log_step(
        "Booking found",
        {"status": booking.status, "payment_status": booking.payment_status},
    )

    caller_is_admin = is_admin(user)
    if not (booking.involves(user) or caller_is_admin):
        raise NotAuthorized("Not authorized to refund this booking")
    log_step(
        "Authorization verified",
        {"is_shopper_or_host": booking.involves(user), "is_admin": caller_is_admin},
    )

    if booking.payment_status != BookingRequest.PaymentStatus.PAID:
        raise InvalidBookingState(f"Cannot refund booking with status: {booking.payment_status}")
    if not booking.payment_intent_id:
        raise InvalidBookingState("No payment intent found for this booking")
    if booking.payout_processed:
        raise InvalidBookingState("Cannot refund booking after the host payout was released")

    amount_cents = None
    if request.refund_amount is not None:
        amount_cents = to_cents(request.refund_amount)
        if booking.total_price is not None and request.refund_amount > booking.total_price:
            log_step.warning(
                "Refund exceeds booking total",
                {"refund_amount": request.refund_amount, "total_price": booking.total_price},
            )
        log_step("Partial refund requested", {"refund_amount_cents": amount_cents})
    else:
        log_step("Full refund requested")

    gateway = gateway or get_payment_gateway()
    refund = gateway.create_refund(
        payment_intent=booking.payment_intent_id,
        amount_cents=amount_cents,
        reason=request.reason,
        metadata={
            "booking_id": str(booking.pk),
            "initiated_by": request.initiated_by,
            "initiated_by_user_id": str(user.pk),
            "cancellation_reason": request.cancellation_reason,
        },
        idempotency_key=booking_refund_key(booking, amount_cents),
    )
    log_step(
        "Refund created",
        {"refund_id": refund.id, "status": refund.status, "amount": refund.amount_cents},
    )

    # The refund has already moved money; a failed write is reconciled by hand.
    try:
        BookingRequest.objects.filter(pk=booking.pk).update(
            payment_status=BookingRequest.PaymentStatus.REFUNDED,
            status=BookingRequest.Status.CANCELLED,
            updated_at=timezone.now(),
        )
    except DatabaseError as exc:
        log_step.warning("Failed to update booking status", {"error": str(exc)})
    else:
        log_step("Booking status updated to refunded")

    amount_display = f"{cents_to_dollars(refund.amount_cents):.2f}"
    for recipient in ("shopper", "host"):
        enqueue(
            notification_tasks.send_refund_email,
            booking.pk,
            recipient,
            amount_display,
            request.cancellation_reason or request.reason,
            request.initiated_by,
        )
    enqueue(
        notification_tasks.create_notification,
        booking.shopper_id,
        Notification.Type.REFUND_PROCESSED,
        "Refund Processed",
        f'Your refund of ${amount_display} for "{booking.listing.title}" has been processed.',
        "/dashboard",
    )

    return RefundOutcome(booking_id=booking.pk, refund=refund)
