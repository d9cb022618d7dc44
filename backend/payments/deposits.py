"""Host-initiated settlement of a booking's security deposit."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from django.utils import timezone

from bookings.models import BookingRequest
from core.exceptions import (
    BookingNotFound,
    InvalidAmount,
    InvalidState,
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
from .payouts import refund_booking_deposit
from .stripe_api import PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)
log_step = StepLogger("PROCESS-DEPOSIT-REFUND", logger)

REFUND_TYPES = ("full", "partial", "forfeit")


@dataclass(frozen=True)
class DepositRefundRequest:
    booking_id: int
    refund_type: str
    deduction_amount: Decimal = Decimal("0")
    notes: str = ""

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "DepositRefundRequest":
        booking_id = data.get("booking_id")
        if booking_id in (None, ""):
            raise ValidationFailed("Missing required field: booking_id")
        try:
            booking_id = int(booking_id)
        except (TypeError, ValueError):
            raise ValidationFailed("booking_id must be an integer.")

        refund_type = data.get("refund_type") or "full"
        if refund_type not in REFUND_TYPES:
            raise ValidationFailed(f"refund_type must be one of: {', '.join(REFUND_TYPES)}")

        deduction = Decimal("0")
        if refund_type == "partial":
            deduction = parse_amount(
                data.get("deduction_amount"),
                "deduction_amount",
                required=True,
                allow_zero=False,
            )

        return cls(
            booking_id=booking_id,
            refund_type=refund_type,
            deduction_amount=deduction,
            notes=(data.get("notes") or "").strip(),
        )


@dataclass(frozen=True)
class DepositRefundOutcome:
    booking_id: int
    deposit_status: str
    refund_cents: int
    deduction_cents: int
    refund_id: str | None = None

    def as_response(self) -> dict[str, Any]:
        return {
            "deposit_status": self.deposit_status,
            "refund_amount": float(cents_to_dollars(self.refund_cents)),
            "deduction_amount": float(cents_to_dollars(self.deduction_cents)),
            "refund_id": self.refund_id,
        }


def _default_notes(refund_type: str, deduction_cents: int) -> str:
    if refund_type == "forfeit":
        return "Deposit forfeited"
    if refund_type == "partial":
        return f"Partial refund: ${cents_to_dollars(deduction_cents):.2f} deducted"
    return "Full deposit refunded"


def process_deposit_refund(
    user,
    payload: Mapping[str, Any],
    *,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> DepositRefundOutcome:
    """
    Return, reduce or forfeit a charged security deposit.

    A partial refund keeps ``deduction_amount`` for the host; a deduction of
    the whole deposit is recorded as a forfeit.
    """
    if user is None or not getattr(user, "is_authenticated", False):
        raise Unauthenticated()
    request = DepositRefundRequest.from_payload(payload)
    log_step(
        "Request received",
        {
            "booking_id": request.booking_id,
            "refund_type": request.refund_type,
            "deduction_amount": request.deduction_amount,
        },
    )

    booking = (
        BookingRequest.objects.select_related("listing").filter(pk=request.booking_id).first()
    )
    if booking is None:
        raise BookingNotFound()
    if booking.host_id != user.pk and not is_admin(user):
        raise NotAuthorized("Only the host or admin can settle this deposit")

    deposit_cents = to_cents(booking.deposit_amount or Decimal("0"))
    if deposit_cents <= 0:
        raise InvalidState("No deposit to refund for this booking")
    if booking.deposit_status == BookingRequest.DepositStatus.REFUNDED:
        raise InvalidState("Deposit has already been refunded")
    if booking.deposit_status != BookingRequest.DepositStatus.CHARGED:
        raise InvalidState(f"Cannot refund deposit with status: {booking.deposit_status}")

    if request.refund_type == "forfeit":
        deduction_cents = deposit_cents
    else:
        deduction_cents = to_cents(request.deduction_amount)
    if deduction_cents > deposit_cents:
        raise InvalidAmount(
            f"deduction_amount cannot exceed the deposit of ${cents_to_dollars(deposit_cents):.2f}"
        )
    refund_cents = deposit_cents - deduction_cents
    log_step(
        "Deposit split",
        {"deposit_cents": deposit_cents, "refund_cents": refund_cents, "deduction_cents": deduction_cents},
    )

    refund = None
    if refund_cents > 0:
        gateway = gateway or get_payment_gateway()
        refund = refund_booking_deposit(booking, gateway=gateway, amount_cents=refund_cents)
        log_step("Deposit refund created", {"refund_id": refund.id if refund else None})

    deposit_status = (
        BookingRequest.DepositStatus.REFUNDED
        if refund_cents > 0
        else BookingRequest.DepositStatus.FORFEITED
    )
    notes = request.notes or _default_notes(request.refund_type, deduction_cents)
    now = now or timezone.now()
    updated = BookingRequest.objects.filter(
        pk=booking.pk,
        deposit_status=BookingRequest.DepositStatus.CHARGED,
    ).update(
        deposit_status=deposit_status,
        deposit_refunded_at=now,
        deposit_refund_notes=notes,
        updated_at=now,
    )
    if not updated:
        log_step.warning("Deposit changed during refund", {"booking_id": booking.pk})

    title = booking.listing.title or "your rental"
    if refund_cents > 0:
        amount = f"{cents_to_dollars(refund_cents):.2f}"
        enqueue(
            notification_tasks.create_notification,
            booking.shopper_id,
            Notification.Type.DEPOSIT_REFUNDED,
            "Deposit Refunded",
            f'${amount} of your security deposit for "{title}" has been refunded.',
            "/dashboard",
            {"booking_id": booking.pk, "amount": float(cents_to_dollars(refund_cents))},
        )
        enqueue(notification_tasks.send_deposit_refund_email, booking.pk, amount, notes)
    else:
        enqueue(
            notification_tasks.create_notification,
            booking.shopper_id,
            Notification.Type.DEPOSIT_REFUNDED,
            "Deposit Forfeited",
            f'Your security deposit for "{title}" was kept by the host. Notes: {notes}',
            "/dashboard",
            {"booking_id": booking.pk},
        )

    return DepositRefundOutcome(
        booking_id=booking.pk,
        deposit_status=deposit_status,
        refund_cents=refund_cents,
        deduction_cents=deduction_cents,
        refund_id=refund.id if refund else None,
    )
