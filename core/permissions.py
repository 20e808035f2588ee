"""
Role based permission classes.

These gate whole endpoints by role.  Per-request decisions (owner,
assignee, state) belong to :mod:`core.lifecycle`.
"""
from rest_framework.permissions import BasePermission


def _has_role(request, *roles) -> bool:
    user = getattr(request, "user", None)
    return bool(user and user.is_authenticated and getattr(user, "role", None) in roles)


class IsAdminRole(BasePermission):
    """Allow access only to administrators."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _has_role(request, "admin")


class IsNurseRole(BasePermission):
    """Allow access only to nurses, verified or not."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return _has_role(request, "nurse")
