"""Domain rules for booking settlement eligibility."""

from __future__ import annotations

from datetime import date, datetime, timedelta

from django.conf import settings
from django.db.models import QuerySet

from .models import BookingRequest

HOST_NO_ACCOUNT_MESSAGE = "Host has no connected Stripe account"
HOST_NOT_ONBOARDED_MESSAGE = "Host has not completed Stripe onboarding"


def deposit_refund_delay_hours() -> int:
    return int(getattr(settings, "DEPOSIT_AUTO_REFUND_DELAY_HOURS", 24))


def auto_deposit_refund_notes() -> str:
    return (
        f"Auto-refunded {deposit_refund_delay_hours()} hours after rental completion"
        " - no issues reported"
    )


def ended_bookings(today: date) -> QuerySet[BookingRequest]:
    """Approved, paid bookings whose end date has passed."""
    return BookingRequest.objects.filter(
        status=BookingRequest.Status.APPROVED,
        payment_status=BookingRequest.PaymentStatus.PAID,
        end_date__lt=today,
    ).order_by("end_date", "pk")


def payout_candidates(today: date) -> QuerySet[BookingRequest]:
    """
    Completed, still-paid bookings whose host payout has not been sent.

    Refunded or cancelled bookings never match, so a refund always wins over
    a pending payout.
    """
    return (
        BookingRequest.objects.filter(
            status=BookingRequest.Status.COMPLETED,
            payment_status=BookingRequest.PaymentStatus.PAID,
            payout_processed=False,
            end_date__lt=today,
        )
        .select_related("host", "listing")
        .order_by("end_date", "pk")
    )


def deposit_refund_cutoff(now: datetime) -> date:
    return (now - timedelta(hours=deposit_refund_delay_hours())).date()


def deposit_refund_candidates(now: datetime) -> QuerySet[BookingRequest]:
    """Completed bookings with a charged deposit whose refund delay has elapsed."""
    return (
        BookingRequest.objects.filter(
            status=BookingRequest.Status.COMPLETED,
            deposit_status=BookingRequest.DepositStatus.CHARGED,
            deposit_amount__gt=0,
            end_date__lt=deposit_refund_cutoff(now),
        )
        .select_related("shopper")
        .order_by("end_date", "pk")
    )


def host_payout_block_reason(host) -> str | None:
    """Return why a host cannot receive transfers, or None if they can."""
    if not host.has_payout_account:
        return HOST_NO_ACCOUNT_MESSAGE
    if not host.stripe_onboarding_complete:
        return HOST_NOT_ONBOARDED_MESSAGE
    return None


def has_refundable_deposit(booking: BookingRequest) -> bool:
    return (
        booking.deposit_status == BookingRequest.DepositStatus.CHARGED
        and (booking.deposit_amount or 0) > 0
    )
