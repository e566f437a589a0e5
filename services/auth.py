"""Session handling with role and permission checks backed by user profiles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional

from datastore.mock_documents import MockDocumentCollection, build_default_profiles
from identity.mock_auth import AuthError, AuthUser, MockIdentityProvider, build_default_identity
from models.profiles import UserProfile

logger = logging.getLogger(__name__)

_SIGN_IN_MESSAGES = {
    "auth/user-not-found": "Invalid email or password",
    "auth/wrong-password": "Invalid email or password",
    "auth/too-many-requests": "Too many failed login attempts. Please try again later.",
}
_SIGN_UP_MESSAGES = {
    "auth/email-already-in-use": "Email already in use",
    "auth/invalid-email": "Invalid email address",
    "auth/weak-password": "Password is too weak",
}
_RESET_MESSAGES = {
    "auth/user-not-found": "No account found with this email",
    "auth/invalid-email": "Invalid email address",
}


@dataclass(frozen=True)
class AuthResult:
    success: bool
    error: Optional[str] = None
    token: Optional[str] = None


@dataclass(frozen=True)
class Session:
    user: AuthUser
    profile: Optional[UserProfile]

    @property
    def needs_onboarding(self) -> bool:
        return self.profile is not None and not self.profile.onboarding_complete

    def has_role(self, roles: Iterable[str]) -> bool:
        if self.profile is None or self.profile.role is None:
            return False
        return self.profile.role.value in set(roles)

    def has_permission(self, permission: str) -> bool:
        if self.profile is None:
            return False
        return permission in self.profile.permissions


class AuthService:
    """Wraps the identity backend and the ``users`` profile collection."""

    def __init__(
        self,
        identity: MockIdentityProvider,
        profiles: MockDocumentCollection[UserProfile],
    ) -> None:
        self.identity = identity
        self.profiles = profiles

    def sign_up(self, email: str, password: str) -> AuthResult:
        try:
            user = self.identity.create_user(email, password)
        except AuthError as exc:
            logger.warning("Sign-up rejected", extra={"reason": exc.code})
            return AuthResult(
                success=False,
                error=_SIGN_UP_MESSAGES.get(exc.code, "Failed to create account"),
            )
        self.profiles.put_item(user.uid, UserProfile.new_default(email=user.email))
        logger.info("Created account", extra={"uid": user.uid})
        return AuthResult(success=True)

    def sign_in(self, email: str, password: str) -> AuthResult:
        try:
            token = self.identity.sign_in(email, password)
        except AuthError as exc:
            logger.warning("Sign-in rejected", extra={"reason": exc.code})
            return AuthResult(
                success=False,
                error=_SIGN_IN_MESSAGES.get(exc.code, "Failed to sign in"),
            )
        return AuthResult(success=True, token=token)

    def sign_out(self, token: str) -> None:
        self.identity.sign_out(token)

    def reset_password(self, email: str) -> AuthResult:
        try:
            self.identity.send_password_reset(email)
        except AuthError as exc:
            logger.warning("Password reset rejected", extra={"reason": exc.code})
            return AuthResult(
                success=False,
                error=_RESET_MESSAGES.get(exc.code, "Failed to send password reset email"),
            )
        return AuthResult(success=True)

    def load_session(self, token: Optional[str]) -> Optional[Session]:
        """Resolve ``token`` into a session, creating a missing profile on the way."""
        if not token:
            return None
        user = self.identity.verify_token(token)
        if user is None:
            return None

        profile = self.profiles.get_item(user.uid)
        if profile is None:
            profile = UserProfile.new_default(email=user.email)
            self.profiles.put_item(user.uid, profile)
            logger.info("Created missing user profile", extra={"uid": user.uid})
        return Session(user=user, profile=profile)

    def set_onboarding_complete(self, session: Session) -> Session:
        profile = self.profiles.update_item(session.user.uid, onboarding_complete=True)
        return Session(user=session.user, profile=profile)


@lru_cache
def build_default_auth_service() -> AuthService:
    return AuthService(identity=build_default_identity(), profiles=build_default_profiles())
