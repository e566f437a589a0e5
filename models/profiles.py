"""User profile documents kept in the ``users`` collection."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

DEFAULT_PERMISSIONS = ("view:basic",)


class Role(str, Enum):
    user = "user"
    admin = "admin"
    developer = "developer"


class NotificationPreferences(BaseModel):
    email_enabled: bool = False


class UserProfile(BaseModel):
    name: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    role: Optional[Role] = Role.user
    onboarding_complete: bool = False
    permissions: List[str] = Field(default_factory=lambda: list(DEFAULT_PERMISSIONS))
    notification_preferences: NotificationPreferences = Field(
        default_factory=NotificationPreferences
    )

    @classmethod
    def new_default(cls, email: Optional[str] = None) -> "UserProfile":
        """Profile created for a first-time user: basic role, onboarding pending."""
        return cls(email=email)
