import hmac

from django.conf import settings
from rest_framework.permissions import BasePermission


class HasServiceRoleKey(BasePermission):
    """
    Allows access only to schedulers presenting ``Bearer <SERVICE_ROLE_KEY>``.
    """

    message = "Service role key required."

    def has_permission(self, request, view):
        expected = getattr(settings, "SERVICE_ROLE_KEY", "") or ""
        if not expected:
            return False
        header = request.META.get("HTTP_AUTHORIZATION", "") or ""
        if not header.startswith("Bearer "):
            return False
        presented = header[len("Bearer ") :].strip()
        return hmac.compare_digest(presented.encode(), expected.encode())
