from rest_framework.permissions import BasePermission

from users.models import is_admin


class IsAdmin(BasePermission):
    """
    Allows access only to authenticated users holding the admin role.
    """

    message = "Admin access required"

    def has_permission(self, request, view):
        return is_admin(getattr(request, "user", None))
