"""Local email/password accounts with auth-state notifications."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable

from passlib.context import CryptContext

from .errors import AuthError
from .models import User
from .progress import ProgressStore

MIN_PASSWORD_LENGTH = 6

AuthListener = Callable[[User | None], None]

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _display_name(name: str, email: str) -> str:
    """Fall back to the email local part when no name was given."""
    cleaned = name.strip()
    if cleaned:
        return cleaned
    return email.split("@", 1)[0] or "User"


class AuthSession:
    """Holds the signed-in user and notifies listeners on every change."""

    def __init__(self, store: ProgressStore) -> None:
        self._store = store
        self._user: User | None = None
        self._listeners: list[AuthListener] = []

    @property
    def current_user(self) -> User | None:
        """Return the signed-in user, if any."""
        return self._user

    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        """Register a listener and return a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _set_user(self, user: User | None) -> None:
        self._user = user
        for listener in list(self._listeners):
            listener(user)

    async def sign_up(self, name: str, email: str, password: str) -> User:
        """Create an account and sign it in."""
        email = _normalize_email(email)
        if not name.strip() or not email or not password:
            raise AuthError("Please fill in all fields")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        password_hash = await asyncio.to_thread(pwd_context.hash, password)
        try:
            user = await asyncio.to_thread(
                self._store.create_user, _display_name(name, email), email, password_hash
            )
        except sqlite3.IntegrityError:
            raise AuthError("User already registered") from None
        logger.info("Signed up user %s", user.id)
        self._set_user(user)
        return user

    async def sign_in(self, email: str, password: str) -> User:
        """Verify credentials and sign the user in."""
        email = _normalize_email(email)
        if not email or not password:
            raise AuthError("Please fill in all fields")

        credentials = await asyncio.to_thread(self._store.get_credentials, email)
        if credentials is None:
            raise AuthError("Invalid login credentials")
        user, password_hash = credentials
        verified = await asyncio.to_thread(pwd_context.verify, password, password_hash)
        if not verified:
            raise AuthError("Invalid login credentials")
        logger.info("Signed in user %s", user.id)
        self._set_user(user)
        return user

    async def sign_out(self) -> None:
        """Clear the signed-in user."""
        if self._user is None:
            return
        logger.info("Signed out user %s", self._user.id)
        self._set_user(None)
