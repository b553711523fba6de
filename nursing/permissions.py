"""
Role permissions for the emergency flow.
"""
from rest_framework.permissions import BasePermission

from nursing.models import NurseProfile


def approved_nurse_for(user):
    """Return the user's approved nurse profile, or None."""
    if not (user and user.is_authenticated):
        return None
    try:
        profile = user.nurse_profile
    except NurseProfile.DoesNotExist:
        return None
    return profile if profile.is_approved else None


class IsApprovedNurse(BasePermission):
    """Allow access only to users with an approved nurse profile."""
    message = 'Only approved nurses can access emergency requests'

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return approved_nurse_for(getattr(request, "user", None)) is not None
