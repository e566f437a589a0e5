from __future__ import annotations

import logging
import re
import secrets
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from functools import lru_cache
from threading import Lock
from typing import Callable, Deque, Dict, Optional, Tuple
from uuid import uuid4

import bcrypt

from settings import get_settings

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MIN_PASSWORD_LENGTH = 6
# bcrypt only looks at the first 72 bytes of a secret.
_BCRYPT_MAX_BYTES = 72


class AuthError(Exception):
    """Identity backend failure identified by a ``auth/...`` code."""

    def __init__(self, code: str, message: Optional[str] = None) -> None:
        super().__init__(message or code)
        self.code = code


@dataclass(frozen=True)
class AuthUser:
    uid: str
    email: str


@dataclass
class _Account:
    user: AuthUser
    password_hash: str
    failed_attempts: int = 0


def _secret(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def get_password_hash(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(_secret(password), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(_secret(password), password_hash.encode("utf-8"))


class MockIdentityProvider:
    """In-process stand-in for the hosted email/password identity service.

    Session tokens expire after ``session_ttl`` seconds and at most
    ``max_sessions`` are kept; the oldest are dropped first. Only the latest
    ``max_reset_requests`` password reset requests are remembered.
    """

    def __init__(
        self,
        max_failed_attempts: int = 5,
        *,
        session_ttl: float = 14 * 24 * 3600,
        max_sessions: int = 1024,
        max_reset_requests: int = 100,
        hash_rounds: int = 12,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_failed_attempts = max_failed_attempts
        self.session_ttl = session_ttl
        self.max_sessions = max_sessions
        self.hash_rounds = hash_rounds
        self._clock = clock
        self._accounts: Dict[str, _Account] = {}
        self._sessions: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._reset_requests: Deque[str] = deque(maxlen=max_reset_requests)
        self._lock = Lock()

    @staticmethod
    def _normalize_email(email: str) -> str:
        candidate = email.strip().lower()
        if not _EMAIL_PATTERN.match(candidate):
            raise AuthError("auth/invalid-email")
        return candidate

    def create_user(self, email: str, password: str) -> AuthUser:
        address = self._normalize_email(email)
        if len(password) < _MIN_PASSWORD_LENGTH:
            raise AuthError("auth/weak-password")
        with self._lock:
            if address in self._accounts:
                raise AuthError("auth/email-already-in-use")
        password_hash = get_password_hash(password, self.hash_rounds)
        account = _Account(user=AuthUser(uid=uuid4().hex, email=address), password_hash=password_hash)
        with self._lock:
            if address in self._accounts:
                raise AuthError("auth/email-already-in-use")
            self._accounts[address] = account
        return account.user

    def password_hash(self, email: str) -> Optional[str]:
        with self._lock:
            account = self._accounts.get(self._normalize_email(email))
            return account.password_hash if account else None

    def sign_in(self, email: str, password: str) -> str:
        """Verify credentials and return a new session token."""
        address = self._normalize_email(email)
        with self._lock:
            account = self._accounts.get(address)
            if account is None:
                raise AuthError("auth/user-not-found")
            if account.failed_attempts >= self.max_failed_attempts:
                raise AuthError("auth/too-many-requests")
            password_hash = account.password_hash
        matched = verify_password(password, password_hash)
        with self._lock:
            if not matched:
                account.failed_attempts += 1
                raise AuthError("auth/wrong-password")
            account.failed_attempts = 0
            now = self._clock()
            self._prune_sessions(now)
            token = secrets.token_urlsafe(32)
            self._sessions[token] = (address, now + self.session_ttl)
            while len(self._sessions) > self.max_sessions:
                self._sessions.popitem(last=False)
            return token

    def _prune_sessions(self, now: float) -> None:
        expired = [token for token, (_, expires_at) in self._sessions.items() if expires_at <= now]
        for token in expired:
            del self._sessions[token]

    def sign_out(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def verify_token(self, token: str) -> Optional[AuthUser]:
        with self._lock:
            entry = self._sessions.get(token)
            if entry is None:
                return None
            address, expires_at = entry
            if expires_at <= self._clock():
                del self._sessions[token]
                return None
            return self._accounts[address].user

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def send_password_reset(self, email: str) -> None:
        address = self._normalize_email(email)
        with self._lock:
            account = self._accounts.get(address)
            if account is None:
                raise AuthError("auth/user-not-found")
            account.failed_attempts = 0
            self._reset_requests.append(address)
        logger.info("Password reset email requested", extra={"uid": account.user.uid})

    def reset_requests(self) -> list[str]:
        with self._lock:
            return list(self._reset_requests)


@lru_cache
def build_default_identity() -> MockIdentityProvider:
    settings = get_settings()
    return MockIdentityProvider(max_failed_attempts=settings.auth_max_failed_attempts)
