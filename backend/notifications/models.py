from django.conf import settings
from django.db import models


class Notification(models.Model):
    """In-app notification shown in the user's inbox."""

    class Type(models.TextChoices):
        BOOKING_COMPLETED = "booking_completed", "Booking completed"
        PAYOUT_SENT = "payout_sent", "Payout sent"
        PAYMENT_CAPTURED = "payment_captured", "Payment captured"
        HOLD_RELEASED = "hold_released", "Hold released"
        PAYOUT_HOLD = "payout_hold", "Payout hold"
        REFUND_PROCESSED = "refund_processed", "Refund processed"
        DEPOSIT_REFUNDED = "deposit_refunded", "Deposit refunded"
        SALE_COMPLETED = "sale_completed", "Sale completed"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    type = models.CharField(max_length=32, choices=Type.choices)
    title = models.CharField(max_length=255)
    message = models.TextField()
    link = models.CharField(max_length=512, blank=True, default="")
    data = models.JSONField(null=True, blank=True)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=["user", "created_at"], name="notif_user_created_idx")]
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.type} -> {self.user_id}"


class NotificationLog(models.Model):
    class Channel(models.TextChoices):
        EMAIL = "email", "Email"

    class Status(models.TextChoices):
        SENT = "sent", "Sent"
        FAILED = "failed", "Failed"

    channel = models.CharField(max_length=8, choices=Channel.choices)
    type = models.CharField(max_length=128)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="notification_logs",
    )
    booking_id = models.IntegerField(null=True, blank=True)
    sale_id = models.IntegerField(null=True, blank=True)
    status = models.CharField(max_length=8, choices=Status.choices)
    error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["booking_id", "created_at"], name="notif_log_booking_idx"),
            models.Index(fields=["sale_id", "created_at"], name="notif_log_sale_idx"),
            models.Index(fields=["type", "created_at"], name="notif_log_type_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.channel}:{self.type} ({self.status})"
