"""Admin credentials and session tokens.

The admin secret is stored only as a salted PBKDF2-SHA256 hash. On first use
it comes from ``ADMIN_PASSWORD_HASH`` (or ``ADMIN_PASSWORD``, hashed at
startup); after a password change the new hash lives in the document store.
A successful login hands out a random bearer token that expires after
``SESSION_TTL_MINUTES``. Sessions are kept in memory and do not survive a
restart.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional

from config import settings

logger = logging.getLogger(__name__)

ALGORITHM = "pbkdf2_sha256"
MIN_PASSWORD_LENGTH = 6


def hash_password(password: str, iterations: Optional[int] = None, salt: Optional[bytes] = None) -> str:
    """Return ``pbkdf2_sha256$<iterations>$<salt>$<digest>``."""
    iterations = iterations or settings.password_hash_iterations
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return "$".join([
        ALGORITHM,
        str(iterations),
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(digest).decode("ascii"),
    ])


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt_b64, digest_b64 = encoded.split("$")
        if algorithm != ALGORITHM:
            return False
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(digest_b64)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, int(iterations))
    except (ValueError, TypeError):
        logger.warning("Stored admin password hash is malformed")
        return False
    return hmac.compare_digest(digest, expected)


class Session:
    def __init__(self, token: str, subject: str, expires_at: float) -> None:
        self.token = token
        self.subject = subject
        self.expires_at = expires_at

    def to_dict(self) -> dict:
        return {"token": self.token, "subject": self.subject, "expiresAt": int(self.expires_at * 1000)}


class SessionStore:
    """In-memory bearer tokens with a fixed time to live."""

    def __init__(self, ttl_minutes: Optional[int] = None, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = (ttl_minutes if ttl_minutes is not None else settings.session_ttl_minutes) * 60
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, subject: str) -> Session:
        with self._lock:
            token = secrets.token_urlsafe(32)
            while token in self._sessions:
                token = secrets.token_urlsafe(32)
            session = Session(token, subject, self._clock() + self.ttl_seconds)
            self._sessions[token] = session
            return session

    def resolve(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if session.expires_at <= self._clock():
                del self._sessions[token]
                return None
            return session

    def revoke(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def revoke_all(self) -> None:
        with self._lock:
            self._sessions.clear()


class AdminAuthenticator:
    """Checks the admin password and manages its sessions.

    ``credential_store`` needs ``get_admin_password_hash()`` and
    ``set_admin_password_hash(value)``; ``library.Library`` provides both.
    """

    SUBJECT = "admin"

    def __init__(self, credential_store, sessions: Optional[SessionStore] = None) -> None:
        self.credential_store = credential_store
        self.sessions = sessions or SessionStore()
        self._bootstrap_hash: Optional[str] = None

    def _current_hash(self) -> str:
        stored = self.credential_store.get_admin_password_hash()
        if stored:
            return stored
        if settings.admin_password_hash:
            return settings.admin_password_hash
        if self._bootstrap_hash is None:
            self._bootstrap_hash = hash_password(settings.admin_password)
        return self._bootstrap_hash

    def login(self, password: str) -> Optional[Session]:
        if not verify_password(password, self._current_hash()):
            logger.warning("Rejected admin login attempt")
            return None
        session = self.sessions.create(self.SUBJECT)
        logger.info("Admin session opened")
        return session

    def logout(self, token: str) -> bool:
        return self.sessions.revoke(token)

    def is_admin(self, token: Optional[str]) -> bool:
        session = self.sessions.resolve(token)
        return session is not None and session.subject == self.SUBJECT

    def change_password(self, current: str, new: str) -> bool:
        """Replace the admin password; every open session is revoked on success."""
        if not verify_password(current, self._current_hash()):
            return False
        if len(new) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        self.credential_store.set_admin_password_hash(hash_password(new))
        self.sessions.revoke_all()
        logger.info("Admin password changed; sessions revoked")
        return True
