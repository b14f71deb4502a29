"""
Custom permission classes for role based access control.
"""
from rest_framework.permissions import BasePermission

from core.models import User


class _RolePermission(BasePermission):
    role = ''
    message = 'This endpoint is not available for your account type.'

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) == self.role)


class IsDonorRole(_RolePermission):
    """Allow access only to donor/patient accounts."""
    role = User.ROLE_DONOR


class IsHospitalRole(_RolePermission):
    """Allow access only to hospital accounts."""
    role = User.ROLE_HOSPITAL


class IsAdminRole(_RolePermission):
    """Allow access only to platform administrators."""
    role = User.ROLE_ADMIN


class IsHospitalOrAdmin(BasePermission):
    """Hospitals act on their own requests; admins on any."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(
            user and user.is_authenticated
            and getattr(user, "role", None) in {User.ROLE_HOSPITAL, User.ROLE_ADMIN}
        )
