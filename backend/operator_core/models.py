from django.conf import settings
from django.db import models


class AppendOnlyError(Exception):
    """Raised when code tries to change or remove an admin audit record."""


class AdminNoteQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise AppendOnlyError("Admin notes are append-only.")

    def delete(self):
        raise AppendOnlyError("Admin notes are append-only.")


class AdminNote(models.Model):
    """One audit record per manual admin action; never updated or deleted."""

    class EntityType(models.TextChoices):
        BOOKING = "booking", "Booking"
        SALE = "sale", "Sale"

    entity_type = models.CharField(max_length=32, choices=EntityType.choices)
    entity_id = models.CharField(max_length=64)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="admin_notes",
    )
    note = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    objects = AdminNoteQuerySet.as_manager()

    class Meta:
        indexes = [
            models.Index(fields=["entity_type", "entity_id", "created_at"], name="admin_note_entity_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.entity_id} by {self.created_by_id}"

    def save(self, *args, **kwargs):
        if self.pk is not None and not self._state.adding:
            raise AppendOnlyError("Admin notes are append-only.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise AppendOnlyError("Admin notes are append-only.")
