from django.conf import settings
from django.db import models


class Listing(models.Model):
    class Mode(models.TextChoices):
        RENT = "rent", "Rent"
        SALE = "sale", "Sale"

    host = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="listings",
    )
    title = models.CharField(max_length=200)
    mode = models.CharField(max_length=8, choices=Mode.choices, default=Mode.RENT)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.title} ({self.mode})"
