"""Sale Auto-Release and Payout Retry jobs.

Both jobs read the platform's available balance once per run and spend it
down locally, oldest sale first, so one run never commits more than the
balance it started with.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from django.conf import settings
from django.utils import timezone

from core.exceptions import InsufficientBalance, SellerNotPayable
from core.steps import StepLogger
from notifications import tasks as notification_tasks
from notifications.dispatch import enqueue
from notifications.models import Notification
from payments.fees import cents_to_dollars
from payments.payouts import transfer_sale_payout
from payments.stripe_api import PaymentGateway, get_payment_gateway

from .models import SaleTransaction

logger = logging.getLogger(__name__)
auto_release_step = StepLogger("AUTO-RELEASE-SALE-PAYOUTS", logger)
retry_step = StepLogger("RETRY-PENDING-PAYOUTS", logger)

# Formatted with the configured release window, in days.
PENDING_FUNDS_MESSAGE = (
    "Auto-completed after {days} days. Payout pending - funds will be transferred when available."
)
PENDING_ACCOUNT_MESSAGE = (
    "Auto-completed after {days} days. Payout pending - seller needs to connect Stripe account."
)
RELEASED_MESSAGE = "Auto-completed and payout released after {days} days."
SELLER_NOT_PAYABLE_MESSAGE = SellerNotPayable.default_message


def _dollars(cents: int) -> str:
    return f"{cents_to_dollars(cents):.2f}"


def _ensure_budget(payout_cents: int, remaining_cents: int) -> None:
    if payout_cents > remaining_cents:
        raise InsufficientBalance(
            f"Insufficient balance: need ${_dollars(payout_cents)}, have ${_dollars(remaining_cents)}"
        )


def auto_release_days() -> int:
    return int(getattr(settings, "SALE_AUTO_RELEASE_DAYS", 25))


def auto_release_threshold(now: datetime) -> datetime:
    return now - timedelta(days=auto_release_days())


def auto_release_candidates(now: datetime):
    """Open sales older than the auto-release window, oldest first."""
    return (
        SaleTransaction.objects.filter(
            status__in=SaleTransaction.OPEN_STATUSES,
            payout_completed_at__isnull=True,
            created_at__lt=auto_release_threshold(now),
        )
        .select_related("seller", "listing")
        .order_by("created_at", "pk")
    )


def pending_payout_candidates():
    """Completed sales still owed a payout, oldest first."""
    return (
        SaleTransaction.objects.filter(
            status=SaleTransaction.Status.COMPLETED,
            payout_completed_at__isnull=True,
        )
        .select_related("seller", "listing")
        .order_by("created_at", "pk")
    )


@dataclass
class AutoReleaseSummary:
    auto_released: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    message: str = ""

    def as_response(self) -> dict:
        return asdict(self)


def _complete_pending(sale: SaleTransaction, message: str, *, now: datetime) -> None:
    SaleTransaction.objects.filter(pk=sale.pk, payout_completed_at__isnull=True).update(
        status=SaleTransaction.Status.COMPLETED,
        message=message,
        updated_at=now,
    )


def auto_release_sale_payouts(
    *,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> AutoReleaseSummary:
    """
    Complete sales left unconfirmed past the timeout and pay their sellers.

    Rows that cannot be paid now are still completed, with ``message``
    explaining why and ``payout_completed_at`` left empty for the retry job.
    """
    now = now or timezone.now()
    days = auto_release_days()
    auto_release_step("Function started", {"threshold": auto_release_threshold(now)})
    summary = AutoReleaseSummary()

    candidates = list(auto_release_candidates(now))
    auto_release_step("Found eligible sales for auto-release", {"count": len(candidates)})
    if not candidates:
        summary.message = "No sales eligible for auto-release"
        return summary

    gateway = gateway or get_payment_gateway()
    remaining_cents = gateway.available_balance_cents()
    auto_release_step("Available balance", {"balance": _dollars(remaining_cents)})

    for sale in candidates:
        payout_cents = sale.seller_payout_cents
        try:
            _ensure_budget(payout_cents, remaining_cents)
        except InsufficientBalance as exc:
            auto_release_step(
                "Insufficient balance for auto-release",
                {"transaction_id": sale.pk, "reason": exc.message},
            )
            _complete_pending(sale, PENDING_FUNDS_MESSAGE.format(days=days), now=now)
            summary.skipped += 1
            continue

        if not sale.seller.is_payable:
            auto_release_step("Seller has no Stripe account", {"transaction_id": sale.pk})
            _complete_pending(sale, PENDING_ACCOUNT_MESSAGE.format(days=days), now=now)
            summary.skipped += 1
            continue

        auto_release_step(
            "Processing auto-release payout",
            {
                "transaction_id": sale.pk,
                "amount": _dollars(payout_cents),
                "destination": sale.seller.stripe_account_id,
                "days_since_paid": (now - sale.created_at).days,
            },
        )
        try:
            transfer_id = transfer_sale_payout(
                sale,
                destination=sale.seller.stripe_account_id,
                gateway=gateway,
                extra_metadata={"type": f"auto_release_{days}_days"},
            )
        except Exception as exc:
            logger.exception("auto_release_sale_payouts: transfer failed for sale %s", sale.pk)
            summary.errors.append(f"Transaction {sale.pk}: {exc}")
            SaleTransaction.objects.filter(pk=sale.pk).update(
                message=f"Auto-release payout failed: {exc}",
                updated_at=now,
            )
            continue

        SaleTransaction.objects.filter(pk=sale.pk, payout_completed_at__isnull=True).update(
            status=SaleTransaction.Status.COMPLETED,
            transfer_id=transfer_id,
            payout_completed_at=now,
            message=RELEASED_MESSAGE.format(days=days),
            updated_at=now,
        )
        remaining_cents -= payout_cents
        summary.auto_released += 1
        auto_release_step(
            "Auto-release payout successful",
            {"transaction_id": sale.pk, "transfer_id": transfer_id},
        )

        title = sale.listing.title or "your item"
        enqueue(
            notification_tasks.create_notification,
            sale.seller_id,
            Notification.Type.SALE_COMPLETED,
            "Sale auto-completed - Funds released!",
            f'Your sale of "{title}" has been automatically completed after {days} days. '
            f"${_dollars(payout_cents)} has been transferred to your account.",
            "/dashboard",
            {"transaction_id": sale.pk},
        )
        enqueue(
            notification_tasks.create_notification,
            sale.buyer_id,
            Notification.Type.SALE_COMPLETED,
            "Purchase auto-completed",
            f'Your purchase of "{title}" has been automatically completed after {days} days. '
            "Funds have been released to the seller.",
            "/dashboard",
            {"transaction_id": sale.pk},
        )
        enqueue(notification_tasks.send_sale_payout_email, sale.pk)

    summary.message = f"Auto-released {summary.auto_released} payouts, {summary.skipped} skipped"
    auto_release_step("Auto-release complete", asdict(summary))
    return summary


@dataclass
class RetrySummary:
    processed: int = 0
    failed: int = 0
    results: list[dict] = field(default_factory=list)
    message: str = ""

    def record(self, sale: SaleTransaction, success: bool, message: str) -> None:
        self.results.append({"transaction_id": sale.pk, "success": success, "message": message})

    def as_response(self) -> dict:
        return asdict(self)


def retry_pending_payouts(*, gateway: PaymentGateway | None = None, now: datetime | None = None) -> RetrySummary:
    """
    Retry owed sale payouts while the available balance lasts.

    A row that does not fit the remaining balance is skipped and later, smaller
    rows are still tried.
    """
    now = now or timezone.now()
    retry_step("Function started")
    summary = RetrySummary()

    gateway = gateway or get_payment_gateway()
    remaining_cents = gateway.available_balance_cents()
    retry_step("Stripe balance retrieved", {"available_balance": _dollars(remaining_cents)})
    if remaining_cents <= 0:
        retry_step("No available balance - skipping payout retry")
        summary.message = "No available balance for payouts"
        return summary

    pending = list(pending_payout_candidates())
    retry_step("Found pending payouts", {"count": len(pending)})
    if not pending:
        summary.message = "No pending payouts to process"
        return summary

    for sale in pending:
        payout_cents = sale.seller_payout_cents
        try:
            _ensure_budget(payout_cents, remaining_cents)
        except InsufficientBalance as exc:
            retry_step("Insufficient balance for payout", {"transaction_id": sale.pk, "reason": exc.message})
            summary.record(sale, False, exc.message)
            continue

        if not sale.seller.is_payable:
            retry_step(
                "Seller has no Stripe account",
                {"transaction_id": sale.pk, "seller_id": sale.seller_id},
            )
            SaleTransaction.objects.filter(pk=sale.pk).update(
                message=SELLER_NOT_PAYABLE_MESSAGE,
                updated_at=now,
            )
            summary.record(sale, False, SELLER_NOT_PAYABLE_MESSAGE)
            continue

        retry_step(
            "Creating transfer",
            {
                "transaction_id": sale.pk,
                "amount": _dollars(payout_cents),
                "destination": sale.seller.stripe_account_id,
            },
        )
        try:
            transfer_id = transfer_sale_payout(
                sale,
                destination=sale.seller.stripe_account_id,
                gateway=gateway,
                extra_metadata={"type": "payout_retry"},
            )
        except Exception as exc:
            logger.exception("retry_pending_payouts: transfer failed for sale %s", sale.pk)
            SaleTransaction.objects.filter(pk=sale.pk).update(
                message=f"Payout retry failed: {exc}",
                updated_at=now,
            )
            summary.failed += 1
            summary.record(sale, False, str(exc))
            continue

        SaleTransaction.objects.filter(pk=sale.pk, payout_completed_at__isnull=True).update(
            transfer_id=transfer_id,
            payout_completed_at=now,
            message=None,
            updated_at=now,
        )
        remaining_cents -= payout_cents
        summary.processed += 1
        summary.record(sale, True, f"Transfer created: {transfer_id}")
        retry_step("Transfer successful", {"transaction_id": sale.pk, "transfer_id": transfer_id})

        enqueue(
            notification_tasks.create_notification,
            sale.seller_id,
            Notification.Type.PAYOUT_SENT,
            "Payout sent",
            f'Your payout of ${_dollars(payout_cents)} for "{sale.listing.title}" has been sent.',
            "/dashboard",
            {"transaction_id": sale.pk, "transfer_id": transfer_id},
        )
        enqueue(notification_tasks.send_sale_payout_email, sale.pk)

    summary.message = f"Processed {summary.processed} payouts, {summary.failed} failed"
    retry_step(
        "Retry complete",
        {
            "processed": summary.processed,
            "failed": summary.failed,
            "remaining": len(pending) - summary.processed - summary.failed,
        },
    )
    return summary
