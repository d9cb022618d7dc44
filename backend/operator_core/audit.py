from operator_core.models import AdminNote


def record_admin_note(*, actor, entity_type, entity_id, note):
    """
    Append an admin audit note. Raises ValueError if note is missing.
    """

    if not note:
        raise ValueError("note is required for admin audit records")

    return AdminNote.objects.create(
        created_by=actor,
        entity_type=entity_type,
        entity_id=str(entity_id),
        note=note,
    )
