"""Models for one-time listing sales awaiting seller payout."""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from listings.models import Listing


class SaleTransaction(models.Model):
    class Status(models.TextChoices):
        PAID = "paid", "paid"
        BUYER_CONFIRMED = "buyer_confirmed", "buyer_confirmed"
        SELLER_CONFIRMED = "seller_confirmed", "seller_confirmed"
        COMPLETED = "completed", "completed"

    # Rows still waiting on confirmations; eligible for the timeout release.
    OPEN_STATUSES = (Status.PAID, Status.BUYER_CONFIRMED, Status.SELLER_CONFIRMED)

    listing = models.ForeignKey(
        Listing,
        related_name="sale_transactions",
        on_delete=models.CASCADE,
    )
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="purchases",
        on_delete=models.CASCADE,
    )
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="sales",
        on_delete=models.CASCADE,
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=10, decimal_places=2)
    seller_payout = models.DecimalField(max_digits=10, decimal_places=2)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PAID)

    payout_completed_at = models.DateTimeField(null=True, blank=True)
    transfer_id = models.CharField(max_length=255, blank=True, default="")
    payout_attempts = models.PositiveIntegerField(default=0)
    message = models.TextField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["status", "payout_completed_at"], name="sales_payout_idx"),
        ]

    def __str__(self) -> str:
        return f"SaleTransaction #{self.pk} ({self.status})"

    @property
    def seller_payout_cents(self) -> int:
        from payments.fees import to_cents

        return to_cents(self.seller_payout)
