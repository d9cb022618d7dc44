"""Booking Completion & Payout job.

Three passes per run, each driven by a narrow row filter so a re-run only
touches rows that are still eligible:

1. approved, paid bookings past their end date become ``completed``;
2. completed bookings with an unsent payout get their host transfer;
3. charged deposits are refunded once the post-rental delay has passed.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime

from django.utils import timezone

from core.steps import StepLogger
from notifications import tasks as notification_tasks
from notifications.dispatch import enqueue
from notifications.models import Notification
from payments.fees import cents_to_dollars, to_cents
from payments.payouts import refund_booking_deposit, transfer_booking_payout
from payments.stripe_api import PaymentGateway, get_payment_gateway

from .domain import (
    auto_deposit_refund_notes,
    deposit_refund_candidates,
    ended_bookings,
    host_payout_block_reason,
    payout_candidates,
)
from .models import BookingRequest

logger = logging.getLogger(__name__)
log_step = StepLogger("COMPLETE-ENDED-BOOKINGS", logger)


@dataclass
class CompletionSummary:
    marked_completed: int = 0
    payouts_processed: int = 0
    payouts_held: int = 0
    payouts_pending: int = 0
    deposits_refunded: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return (
            f"Completed: {self.marked_completed} marked, {self.payouts_processed} payouts, "
            f"{self.deposits_refunded} deposits refunded"
        )

    def as_response(self) -> dict:
        return {"message": self.message, **asdict(self)}


def _mark_completed(summary: CompletionSummary, *, now: datetime) -> None:
    log_step("Step 1: Marking ended bookings as completed")
    for booking in ended_bookings(now.date()):
        try:
            updated = BookingRequest.objects.filter(
                pk=booking.pk,
                status=BookingRequest.Status.APPROVED,
                payment_status=BookingRequest.PaymentStatus.PAID,
            ).update(status=BookingRequest.Status.COMPLETED, updated_at=now)
        except Exception as exc:
            logger.exception("complete_ended_bookings: failed to complete booking %s", booking.pk)
            summary.errors.append(f"Failed to complete booking {booking.pk}: {exc}")
            continue
        if not updated:
            continue

        summary.marked_completed += 1
        log_step("Marked booking as completed", {"booking_id": booking.pk})
        enqueue(
            notification_tasks.create_notification,
            booking.shopper_id,
            Notification.Type.BOOKING_COMPLETED,
            "Booking Completed",
            "Your booking has been marked as completed. We hope you had a great experience!",
            None,
            {"booking_id": booking.pk},
        )


def _record_payout_message(booking: BookingRequest, message: str, *, now: datetime) -> None:
    BookingRequest.objects.filter(pk=booking.pk, payout_processed=False).update(
        payout_message=message,
        updated_at=now,
    )


def _process_payouts(summary: CompletionSummary, *, gateway: PaymentGateway, now: datetime) -> None:
    log_step("Step 2: Processing rental payouts")
    for booking in payout_candidates(now.date()):
        if booking.payout_hold_active(now):
            summary.payouts_held += 1
            log_step(
                "Booking has manual hold - skipping payout",
                {
                    "booking_id": booking.pk,
                    "hold_until": booking.payout_hold_until,
                    "reason": booking.payout_hold_reason,
                },
            )
            continue

        block_reason = host_payout_block_reason(booking.host)
        if block_reason:
            summary.payouts_pending += 1
            _record_payout_message(booking, block_reason, now=now)
            log_step("Host not payable - payout pending", {"booking_id": booking.pk, "reason": block_reason})
            continue

        try:
            transfer_id, amount_cents = transfer_booking_payout(
                booking,
                destination=booking.host.stripe_account_id,
                gateway=gateway,
                payout_type="booking_payout",
            )
        except Exception as exc:
            logger.exception("complete_ended_bookings: payout failed for booking %s", booking.pk)
            summary.errors.append(f"Payout failed for {booking.pk}: {exc}")
            _record_payout_message(booking, f"Payout failed: {exc}", now=now)
            continue

        # A refund landing between selection and here must still win.
        updated = BookingRequest.objects.filter(
            pk=booking.pk,
            payout_processed=False,
            status=BookingRequest.Status.COMPLETED,
            payment_status=BookingRequest.PaymentStatus.PAID,
        ).update(
            payout_processed=True,
            payout_processed_at=now,
            payout_transfer_id=transfer_id,
            payout_message="",
            updated_at=now,
        )
        if not updated:
            log_step.warning(
                "Payout transfer created but booking no longer eligible",
                {"booking_id": booking.pk, "transfer_id": transfer_id},
            )
            summary.errors.append(
                f"Booking {booking.pk} changed during payout; transfer {transfer_id} needs reconciliation"
            )
            continue

        summary.payouts_processed += 1
        log_step("Payout processed", {"booking_id": booking.pk, "transfer_id": transfer_id})

        amount = cents_to_dollars(amount_cents)
        enqueue(
            notification_tasks.create_notification,
            booking.host_id,
            Notification.Type.PAYOUT_SENT,
            "Payout Received!",
            f"Your payout of ${amount:.2f} has been sent to your bank account.",
            None,
            {"booking_id": booking.pk, "transfer_id": transfer_id, "amount": float(amount)},
        )
        enqueue(notification_tasks.send_payout_email, booking.pk, f"{amount:.2f}")


def _refund_deposits(summary: CompletionSummary, *, gateway: PaymentGateway, now: datetime) -> None:
    log_step("Step 3: Auto-refunding deposits")
    notes = auto_deposit_refund_notes()
    for booking in deposit_refund_candidates(now):
        if booking.payout_hold_active(now):
            log_step(
                "Booking has manual hold - skipping deposit refund",
                {"booking_id": booking.pk, "hold_until": booking.payout_hold_until},
            )
            continue

        log_step(
            "Processing auto deposit refund",
            {"booking_id": booking.pk, "deposit_amount": booking.deposit_amount},
        )
        try:
            refund = refund_booking_deposit(booking, gateway=gateway)
        except Exception as exc:
            logger.exception("complete_ended_bookings: deposit refund failed for booking %s", booking.pk)
            summary.errors.append(f"Deposit refund failed for {booking.pk}: {exc}")
            continue

        updated = BookingRequest.objects.filter(
            pk=booking.pk,
            deposit_status=BookingRequest.DepositStatus.CHARGED,
        ).update(
            deposit_status=BookingRequest.DepositStatus.REFUNDED,
            deposit_refunded_at=now,
            deposit_refund_notes=notes,
            updated_at=now,
        )
        if not updated:
            continue

        summary.deposits_refunded += 1
        log_step("Deposit refunded", {"booking_id": booking.pk, "refund_id": refund.id if refund else None})

        amount = cents_to_dollars(to_cents(booking.deposit_amount))
        enqueue(
            notification_tasks.create_notification,
            booking.shopper_id,
            Notification.Type.DEPOSIT_REFUNDED,
            "Deposit Refunded!",
            f"Your ${amount:.2f} security deposit has been automatically refunded.",
            None,
            {"booking_id": booking.pk, "amount": float(amount)},
        )
        enqueue(
            notification_tasks.send_deposit_refund_email,
            booking.pk,
            f"{amount:.2f}",
            notes,
        )


def complete_ended_bookings(
    *,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> CompletionSummary:
    """
    Complete ended bookings, pay their hosts and refund idle deposits.

    Per-booking failures are collected in the summary and never abort the run.
    """
    now = now or timezone.now()
    log_step("Function started", {"now": now, "today": now.date()})
    gateway = gateway or get_payment_gateway()
    summary = CompletionSummary()

    _mark_completed(summary, now=now)
    _process_payouts(summary, gateway=gateway, now=now)
    _refund_deposits(summary, gateway=gateway, now=now)

    log_step("Processing complete", asdict(summary))
    return summary

