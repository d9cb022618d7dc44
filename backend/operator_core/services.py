"""Admin overrides on booking settlement: manual release and payout holds."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time
from datetime import timezone as dt_timezone
from typing import Any, Mapping

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import serializers

from bookings.domain import has_refundable_deposit, host_payout_block_reason
from bookings.models import BookingRequest
from core.exceptions import BookingNotFound, HostNotPayable, InvalidState, ValidationFailed
from core.steps import StepLogger
from notifications import tasks as notification_tasks
from notifications.dispatch import enqueue
from notifications.models import Notification
from payments.fees import cents_to_dollars, to_cents
from payments.payouts import refund_booking_deposit, transfer_booking_payout
from payments.stripe_api import PaymentGateway, get_payment_gateway

from .audit import record_admin_note
from .models import AdminNote

logger = logging.getLogger(__name__)
release_step = StepLogger("ADMIN-RELEASE-PAYOUT", logger)
hold_step = StepLogger("ADMIN-SET-HOLD", logger)

RELEASE_TYPES = ("payout", "deposit", "both")

_boolean = serializers.BooleanField()


def _booking_id(data: Mapping[str, Any]) -> int:
    value = data.get("booking_id")
    if value in (None, ""):
        raise ValidationFailed("booking_id is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed("booking_id must be an integer.")


def _flag(data: Mapping[str, Any], name: str) -> bool:
    """Read a boolean flag strictly; a string such as "false" must not count as set."""
    value = data.get(name)
    if value in (None, ""):
        return False
    try:
        return _boolean.to_internal_value(value)
    except serializers.ValidationError:
        raise ValidationFailed(f"{name} must be a boolean")


def _get_booking(booking_id: int) -> BookingRequest:
    booking = (
        BookingRequest.objects.select_related("host", "listing").filter(pk=booking_id).first()
    )
    if booking is None:
        raise BookingNotFound()
    return booking


@dataclass
class ReleaseOutcome:
    results: dict[str, str] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)

    def as_response(self) -> dict[str, Any]:
        return {
            "message": "Manual release processed successfully",
            "results": self.results,
            "skipped": self.skipped,
        }


def _payout_skip_reason(booking: BookingRequest) -> str | None:
    if booking.payout_processed:
        return "Payout already processed"
    if booking.is_refunded():
        return "Booking was refunded or cancelled"
    if booking.payment_status != BookingRequest.PaymentStatus.PAID:
        return "Booking is not paid"
    return None


def _deposit_skip_reason(booking: BookingRequest) -> str | None:
    if booking.deposit_status == BookingRequest.DepositStatus.REFUNDED:
        return "Deposit already refunded"
    if not booking.deposit_amount or booking.deposit_amount <= 0:
        return "No deposit to refund"
    if not has_refundable_deposit(booking):
        return "Deposit not in refundable state"
    return None


def _release_payout(
    booking: BookingRequest,
    admin,
    reason: str,
    outcome: ReleaseOutcome,
    *,
    gateway: PaymentGateway,
    now: datetime,
) -> None:
    release_step(
        "Creating transfer",
        {"booking_id": booking.pk, "destination": booking.host.stripe_account_id},
    )
    transfer_id, amount_cents = transfer_booking_payout(
        booking,
        destination=booking.host.stripe_account_id,
        gateway=gateway,
        payout_type="manual_early_release",
        extra_metadata={
            "released_by": str(admin.pk),
            "reason": reason or "Admin manual release",
        },
    )
    updated = BookingRequest.objects.filter(pk=booking.pk, payout_processed=False).update(
        payout_processed=True,
        payout_processed_at=now,
        payout_transfer_id=transfer_id,
        payout_hold_until=None,
        payout_hold_reason=f"Manually released by admin: {reason or 'No reason provided'}",
        payout_hold_set_by=admin,
        payout_message="",
        updated_at=now,
    )
    if not updated:
        release_step.warning(
            "Payout transfer created but booking already marked processed",
            {"booking_id": booking.pk, "transfer_id": transfer_id},
        )
    outcome.results["payout"] = transfer_id
    release_step("Payout processed", {"transfer_id": transfer_id})

    enqueue(
        notification_tasks.create_notification,
        booking.host_id,
        Notification.Type.PAYOUT_SENT,
        "Early Payout Released!",
        f"Your payout of ${cents_to_dollars(amount_cents):.2f} has been manually released.",
        None,
        {"booking_id": booking.pk, "transfer_id": transfer_id},
    )
    enqueue(notification_tasks.send_payout_email, booking.pk, f"{cents_to_dollars(amount_cents):.2f}")


def _release_deposit(
    booking: BookingRequest,
    reason: str,
    outcome: ReleaseOutcome,
    *,
    gateway: PaymentGateway,
    now: datetime,
) -> None:
    refund = refund_booking_deposit(booking, gateway=gateway)
    notes = f"Manually released by admin: {reason or 'No reason provided'}"
    BookingRequest.objects.filter(
        pk=booking.pk,
        deposit_status=BookingRequest.DepositStatus.CHARGED,
    ).update(
        deposit_status=BookingRequest.DepositStatus.REFUNDED,
        deposit_refunded_at=now,
        deposit_refund_notes=notes,
        updated_at=now,
    )
    outcome.results["deposit"] = refund.id if refund else "released"
    release_step("Deposit refunded", {"refund_id": refund.id if refund else None})

    amount = cents_to_dollars(to_cents(booking.deposit_amount))
    enqueue(
        notification_tasks.create_notification,
        booking.shopper_id,
        Notification.Type.DEPOSIT_REFUNDED,
        "Deposit Refunded!",
        f"Your ${amount:.2f} security deposit has been manually released.",
        None,
        {"booking_id": booking.pk, "amount": float(amount)},
    )
    enqueue(notification_tasks.send_deposit_refund_email, booking.pk, f"{amount:.2f}", notes)


def release_payout(
    admin,
    payload: Mapping[str, Any],
    *,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> ReleaseOutcome:
    """
    Force-release a booking's host payout and/or security deposit.

    Sub-actions that have nothing to do are skipped, never errors. Once the
    request is validated, exactly one AdminNote is appended, even if a
    processor call fails part-way.
    """
    booking_id = _booking_id(payload)
    release_type = payload.get("release_type")
    if release_type not in RELEASE_TYPES:
        raise ValidationFailed("release_type must be 'payout', 'deposit', or 'both'")
    reason = (payload.get("reason") or "").strip()
    release_step(
        "Processing manual release",
        {"booking_id": booking_id, "release_type": release_type, "admin_id": admin.pk},
    )

    booking = _get_booking(booking_id)
    now = now or timezone.now()
    outcome = ReleaseOutcome()

    payout_skip = _payout_skip_reason(booking) if release_type in ("payout", "both") else None
    wants_payout = release_type in ("payout", "both") and payout_skip is None
    if wants_payout and host_payout_block_reason(booking.host):
        raise HostNotPayable("Host has no connected Stripe account")

    gateway = gateway or get_payment_gateway()
    try:
        if release_type in ("payout", "both"):
            if wants_payout:
                _release_payout(booking, admin, reason, outcome, gateway=gateway, now=now)
            else:
                outcome.skipped["payout"] = payout_skip
                release_step("Payout skipped", {"booking_id": booking.pk, "reason": payout_skip})

        if release_type in ("deposit", "both"):
            deposit_skip = _deposit_skip_reason(booking)
            if deposit_skip is None:
                _release_deposit(booking, reason, outcome, gateway=gateway, now=now)
            else:
                outcome.skipped["deposit"] = deposit_skip
                release_step("Deposit skipped", {"booking_id": booking.pk, "reason": deposit_skip})
    finally:
        record_admin_note(
            actor=admin,
            entity_type=AdminNote.EntityType.BOOKING,
            entity_id=booking.pk,
            note=f"Manual release: {release_type}. Reason: {reason or 'Not specified'}",
        )

    release_step("Manual release complete", outcome.results)
    return outcome


def _parse_hold_until(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        parsed = parse_datetime(text)
        if parsed is None:
            day = parse_date(text)
            if day is None:
                raise ValidationFailed("hold_until must be an ISO-8601 date or datetime")
            parsed = datetime.combine(day, time.min)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def set_payout_hold(
    admin,
    payload: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Place, extend or clear an admin hold on a booking's payout."""
    booking_id = _booking_id(payload)
    booking = _get_booking(booking_id)
    if booking.payout_processed:
        raise InvalidState("Cannot set hold - payout already processed")

    now = now or timezone.now()
    reason = (payload.get("reason") or "").strip()

    if _flag(payload, "clear_hold"):
        hold_step("Clearing hold", {"booking_id": booking.pk, "admin_id": admin.pk})
        BookingRequest.objects.filter(pk=booking.pk).update(
            payout_hold_until=None,
            payout_hold_reason=f"Hold cleared by admin: {reason or 'No reason provided'}",
            payout_hold_set_by=admin,
            updated_at=now,
        )
        enqueue(
            notification_tasks.create_notification,
            booking.host_id,
            Notification.Type.PAYOUT_HOLD,
            "Payout Hold Cleared",
            "The hold on your payout has been cleared. It will be processed in the next payout cycle.",
            None,
            {"booking_id": booking.pk},
        )
        record_admin_note(
            actor=admin,
            entity_type=AdminNote.EntityType.BOOKING,
            entity_id=booking.pk,
            note=f"Payout hold cleared. Reason: {reason or 'Not specified'}",
        )
        hold_step("Hold cleared", {"booking_id": booking.pk})
        return {"message": "Payout hold cleared successfully"}

    if not payload.get("hold_until"):
        raise ValidationFailed("hold_until date is required when setting a hold")
    if not reason:
        raise ValidationFailed("reason is required when setting a hold")
    hold_until = _parse_hold_until(payload["hold_until"])
    if hold_until <= now:
        raise ValidationFailed("hold_until must be in the future")

    hold_step(
        "Setting hold",
        {"booking_id": booking.pk, "hold_until": hold_until, "admin_id": admin.pk},
    )
    BookingRequest.objects.filter(pk=booking.pk).update(
        payout_hold_until=hold_until,
        payout_hold_reason=reason,
        payout_hold_set_by=admin,
        updated_at=now,
    )
    title = booking.listing.title or "a booking"
    enqueue(
        notification_tasks.create_notification,
        booking.host_id,
        Notification.Type.PAYOUT_HOLD,
        "Payout Temporarily Held",
        f'Your payout for "{title}" is on hold until {hold_until:%b %d, %Y}. Reason: {reason}',
        None,
        {"booking_id": booking.pk},
    )
    record_admin_note(
        actor=admin,
        entity_type=AdminNote.EntityType.BOOKING,
        entity_id=booking.pk,
        note=f"Payout hold set until {hold_until.isoformat()}. Reason: {reason}",
    )
    hold_step("Hold set", {"booking_id": booking.pk, "hold_until": hold_until})
    return {"message": "Payout hold set successfully", "hold_until": hold_until.isoformat()}
