"""Bind the progress engine to the auth session's identity."""

from __future__ import annotations

import logging
from collections.abc import Callable

from .auth import AuthSession
from .engine import ProgressEngine
from .models import User

logger = logging.getLogger(__name__)


class SessionBinding:
    """Reload or clear engine state whenever the signed-in user changes."""

    def __init__(self, auth: AuthSession, engine: ProgressEngine) -> None:
        self._auth = auth
        self._engine = engine
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def attach(self) -> None:
        """Start following auth changes and bind the current user, if any."""
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._auth.on_auth_state_change(self._on_change)
        current = self._auth.current_user
        if current is not None:
            self._engine.bind(current)

    def detach(self) -> None:
        """Stop following auth changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_change(self, user: User | None) -> None:
        logger.debug("Auth state changed: %s", user.id if user else "signed out")
        self._engine.bind(user)
