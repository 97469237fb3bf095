from django.core.exceptions import ObjectDoesNotExist
from rest_framework.permissions import BasePermission


ROLE_ADMIN = "admin"
ROLE_MENTEE = "mentee"
ROLE_MENTOR = "mentor"
APP_ROLES = {ROLE_ADMIN, ROLE_MENTEE, ROLE_MENTOR}


def normalize_role(value):
    if value is None:
        return None
    role = str(value).strip().lower()
    return role if role in APP_ROLES else None


def user_role(user):
    if not user or not user.is_authenticated:
        return None
    try:
        return user.userprofile.role
    except ObjectDoesNotExist:
        if user.is_superuser:
            return ROLE_ADMIN
        return None


class IsAuthenticatedWithAppRole(BasePermission):
    def has_permission(self, request, view):
        role = user_role(request.user)
        return bool(role in APP_ROLES)


class IsMenteeOrAdminRole(BasePermission):
    def has_permission(self, request, view):
        role = user_role(request.user)
        return bool(role in {ROLE_MENTEE, ROLE_ADMIN})

