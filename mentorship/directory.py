"""Read-only lookups of users and their public profile data.

Lookups are not guarded: a store failure propagates so that any
authorization decision depending on it fails closed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from django.contrib.auth import get_user_model
from rest_framework.exceptions import NotFound

from .models import UserProfile


User = get_user_model()


@dataclass
class DirectoryUser:
    id: int
    role: str | None
    approved: bool
    name: str
    email: str


@dataclass
class ProfileSummary:
    bio: str = ""
    skills: List[str] = field(default_factory=list)
    picture: str = ""
    location: str = ""

    def as_dict(self) -> dict:
        return {
            "bio": self.bio,
            "skills": list(self.skills),
            "picture": self.picture,
            "location": self.location,
        }


def display_name(user) -> str:
    full_name = f"{user.first_name or ''} {user.last_name or ''}".strip()
    return full_name or user.username


def get_user(user_id) -> DirectoryUser:
    user = User.objects.filter(id=user_id).first()
    if user is None:
        raise NotFound(f"User {user_id} not found.")
    profile = getattr(user, "userprofile", None)
    return DirectoryUser(
        id=user.id,
        role=profile.role if profile else None,
        approved=bool(profile and profile.is_approved),
        name=display_name(user),
        email=user.email,
    )


def summarize_profile(profile: UserProfile | None) -> ProfileSummary:
    if profile is None:
        return ProfileSummary()
    return ProfileSummary(
        bio=profile.bio or "",
        skills=list(profile.skills or []),
        picture=profile.profile_picture or "",
        location=profile.location or "",
    )


def get_profile(user_id) -> ProfileSummary:
    return summarize_profile(UserProfile.objects.filter(user_id=user_id).first())


def user_card(user) -> dict:
    """Counterpart summary embedded in connection and session payloads."""
    profile = getattr(user, "userprofile", None)
    return {
        "id": user.id,
        "name": display_name(user),
        "email": user.email,
        "role": profile.role if profile else None,
        "profile": summarize_profile(profile).as_dict(),
    }
