from django.core.exceptions import ObjectDoesNotExist
from rest_framework.permissions import BasePermission

from .models import Role


def get_role(user):
    """
    Role of an authenticated user.

    Profile role wins; users without a profile fall back to Django's flags.
    """
    try:
        return user.profile.role
    except (AttributeError, ObjectDoesNotExist):
        pass
    if getattr(user, 'is_superuser', False):
        return Role.ADMIN
    if getattr(user, 'is_staff', False):
        return Role.STAFF
    return Role.PATIENT


def is_staff_role(user):
    return get_role(user) in (Role.STAFF, Role.ADMIN)


class IsPatient(BasePermission):
    message = 'Only patients can perform this action.'

    def has_permission(self, request, view):
        return get_role(request.user) == Role.PATIENT


class IsStaffOrAdmin(BasePermission):
    message = 'Only staff or administrators can perform this action.'

    def has_permission(self, request, view):
        return is_staff_role(request.user)


class IsAdminRole(BasePermission):
    message = 'Only administrators can perform this action.'

    def has_permission(self, request, view):
        return get_role(request.user) == Role.ADMIN
