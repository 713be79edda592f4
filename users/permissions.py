# users/permissions.py
from rest_framework import permissions


class IsAdmin(permissions.BasePermission):
    """Platform administrators only."""
    message = "Administrator access required."

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and (user.is_staff or getattr(user, 'role', '') == 'admin'))


class IsAdminOrSupervisor(permissions.BasePermission):
    """
    Allows access to Admins and Supervisors.
    Strictly blocks Students.
    """
    message = "Administrator or supervisor access required."

    def has_permission(self, request, view):
        # 1. User must be logged in
        if not request.user or not request.user.is_authenticated:
            return False

        # 2. Check Role
        return (
            request.user.is_staff or
            getattr(request.user, 'role', '') in ['admin', 'supervisor']
        )


class IsStudent(permissions.BasePermission):
    message = "Only students can take exams."

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and getattr(user, 'role', '') == 'student')
