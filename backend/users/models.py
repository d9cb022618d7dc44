from __future__ import annotations

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Marketplace account; hosts and sellers carry their Stripe Connect details here."""

    full_name = models.CharField(max_length=255, blank=True, default="")
    display_name = models.CharField(max_length=255, blank=True, default="")
    stripe_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Connect account that receives payouts.",
    )
    stripe_onboarding_complete = models.BooleanField(
        default=False,
        help_text="Charges and payouts enabled on the connected account.",
    )

    def name_for_display(self, fallback: str = "") -> str:
        for candidate in (self.display_name, self.full_name, self.get_full_name()):
            value = (candidate or "").strip()
            if value:
                return value
        return fallback or self.username

    @property
    def has_payout_account(self) -> bool:
        """True when a connected account exists, onboarded or not."""
        return bool((self.stripe_account_id or "").strip())

    @property
    def is_payable(self) -> bool:
        """True when transfers to this user can be created."""
        return self.has_payout_account and self.stripe_onboarding_complete


class UserRole(models.Model):
    class Role(models.TextChoices):
        ADMIN = "admin", "Admin"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="roles",
    )
    role = models.CharField(max_length=32, choices=Role.choices)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["user", "role"], name="users_userrole_unique_role"),
        ]

    def __str__(self) -> str:
        return f"{self.user_id}:{self.role}"


def is_admin(user) -> bool:
    """Return True if the user holds an admin role row."""
    if user is None or not getattr(user, "is_authenticated", False):
        return False
    return UserRole.objects.filter(user_id=user.pk, role=UserRole.Role.ADMIN).exists()
