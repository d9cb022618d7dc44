import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("listings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="BookingRequest",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("start_date", models.DateField()),
                ("end_date", models.DateField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "pending"),
                            ("approved", "approved"),
                            ("declined", "declined"),
                            ("cancelled", "cancelled"),
                            ("completed", "completed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[("unpaid", "unpaid"), ("paid", "paid"), ("refunded", "refunded")],
                        default="unpaid",
                        max_length=16,
                    ),
                ),
                (
                    "total_price",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                (
                    "deposit_amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                ("payment_intent_id", models.CharField(blank=True, default="", max_length=255)),
                ("checkout_session_id", models.CharField(blank=True, default="", max_length=255)),
                (
                    "hold_status",
                    models.CharField(
                        choices=[
                            ("none", "none"),
                            ("pending", "pending"),
                            ("captured", "captured"),
                            ("released", "released"),
                        ],
                        default="none",
                        max_length=16,
                    ),
                ),
                ("hold_expires_at", models.DateTimeField(blank=True, null=True)),
                ("payout_processed", models.BooleanField(default=False)),
                ("payout_processed_at", models.DateTimeField(blank=True, null=True)),
                ("payout_transfer_id", models.CharField(blank=True, default="", max_length=255)),
                (
                    "payout_attempts",
                    models.PositiveIntegerField(
                        default=0,
                        help_text=(
                            "Bumped after a rejected transfer so the next try uses a fresh"
                            " idempotency key."
                        ),
                    ),
                ),
                ("payout_hold_until", models.DateTimeField(blank=True, null=True)),
                ("payout_hold_reason", models.TextField(blank=True, default="")),
                (
                    "payout_message",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text=(
                            "Why an owed payout has not been sent yet; surfaced to admin tooling."
                        ),
                    ),
                ),
                (
                    "deposit_status",
                    models.CharField(
                        choices=[
                            ("none", "none"),
                            ("charged", "charged"),
                            ("refunded", "refunded"),
                            ("forfeited", "forfeited"),
                        ],
                        default="none",
                        max_length=16,
                    ),
                ),
                ("deposit_charge_id", models.CharField(blank=True, default="", max_length=255)),
                ("deposit_refunded_at", models.DateTimeField(blank=True, null=True)),
                ("deposit_refund_notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "host",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="booking_requests_as_host",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "listing",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="booking_requests",
                        to="listings.listing",
                    ),
                ),
                (
                    "payout_hold_set_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "shopper",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="booking_requests_as_shopper",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "payment_status", "end_date"],
                        name="bookings_settle_idx",
                    ),
                    models.Index(fields=["shopper", "status"], name="bookings_shopper_idx"),
                    models.Index(fields=["host", "status"], name="bookings_host_idx"),
                ],
            },
        ),
    ]
