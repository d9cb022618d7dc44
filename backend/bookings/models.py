"""Database models for rental booking requests."""

from __future__ import annotations

from datetime import datetime

from django.conf import settings
from django.db import models
from django.utils import timezone

from listings.models import Listing


class BookingRequest(models.Model):
    """A rental reservation moving through authorization, settlement and payout."""

    class Status(models.TextChoices):
        PENDING = "pending", "pending"
        APPROVED = "approved", "approved"
        DECLINED = "declined", "declined"
        CANCELLED = "cancelled", "cancelled"
        COMPLETED = "completed", "completed"

    class PaymentStatus(models.TextChoices):
        UNPAID = "unpaid", "unpaid"
        PAID = "paid", "paid"
        REFUNDED = "refunded", "refunded"

    class HoldStatus(models.TextChoices):
        NONE = "none", "none"
        PENDING = "pending", "pending"
        CAPTURED = "captured", "captured"
        RELEASED = "released", "released"

    class DepositStatus(models.TextChoices):
        NONE = "none", "none"
        CHARGED = "charged", "charged"
        REFUNDED = "refunded", "refunded"
        FORFEITED = "forfeited", "forfeited"

    listing = models.ForeignKey(
        Listing,
        related_name="booking_requests",
        on_delete=models.CASCADE,
    )
    shopper = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="booking_requests_as_shopper",
        on_delete=models.CASCADE,
    )
    host = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="booking_requests_as_host",
        on_delete=models.CASCADE,
    )
    start_date = models.DateField()
    end_date = models.DateField()
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=16,
        choices=PaymentStatus.choices,
        default=PaymentStatus.UNPAID,
    )

    total_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    deposit_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    payment_intent_id = models.CharField(max_length=255, blank=True, default="")
    checkout_session_id = models.CharField(max_length=255, blank=True, default="")

    hold_status = models.CharField(max_length=16, choices=HoldStatus.choices, default=HoldStatus.NONE)
    hold_expires_at = models.DateTimeField(null=True, blank=True)

    payout_processed = models.BooleanField(default=False)
    payout_processed_at = models.DateTimeField(null=True, blank=True)
    payout_transfer_id = models.CharField(max_length=255, blank=True, default="")
    payout_attempts = models.PositiveIntegerField(
        default=0,
        help_text="Bumped after a rejected transfer so the next try uses a fresh idempotency key.",
    )
    payout_hold_until = models.DateTimeField(null=True, blank=True)
    payout_hold_reason = models.TextField(blank=True, default="")
    payout_hold_set_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    payout_message = models.TextField(
        blank=True,
        default="",
        help_text="Why an owed payout has not been sent yet; surfaced to admin tooling.",
    )

    deposit_status = models.CharField(
        max_length=16,
        choices=DepositStatus.choices,
        default=DepositStatus.NONE,
    )
    deposit_charge_id = models.CharField(max_length=255, blank=True, default="")
    deposit_refunded_at = models.DateTimeField(null=True, blank=True)
    deposit_refund_notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["status", "payment_status", "end_date"],
                name="bookings_settle_idx",
            ),
            models.Index(fields=["shopper", "status"], name="bookings_shopper_idx"),
            models.Index(fields=["host", "status"], name="bookings_host_idx"),
        ]

    def __str__(self) -> str:
        return f"BookingRequest #{self.pk} for {self.listing_id} ({self.status}/{self.payment_status})"

    def is_terminal(self) -> bool:
        return self.status in {
            self.Status.DECLINED,
            self.Status.CANCELLED,
            self.Status.COMPLETED,
        }

    def is_refunded(self) -> bool:
        return (
            self.payment_status == self.PaymentStatus.REFUNDED
            or self.status == self.Status.CANCELLED
        )

    def payout_hold_active(self, now: datetime | None = None) -> bool:
        """Return True while an admin payout hold has not yet expired."""
        if self.payout_hold_until is None:
            return False
        return self.payout_hold_until > (now or timezone.now())

    def involves(self, user) -> bool:
        user_id = getattr(user, "pk", None)
        return user_id is not None and user_id in (self.shopper_id, self.host_id)
