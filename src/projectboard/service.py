"""Application service wiring catalog, store, auth and progress engine."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from .auth import AuthSession
from .catalog_loader import load_catalog
from .config import Settings, get_settings
from .engine import ProgressEngine
from .errors import NotInitializedError
from .models import Project
from .progress import AsyncProgressStore, ProgressStore
from .session import SessionBinding
from .status import search_catalog

logger = logging.getLogger(__name__)


class BoardService:
    """Owns the collaborators for one running app and hands them out explicitly.

    Components are created by ``start()``; reading them before that (or after
    ``close()``) raises ``NotInitializedError``.
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        *,
        settings: Settings | None = None,
        catalog: Sequence[Project] | None = None,
    ) -> None:
        """Initialize service with database path and settings."""
        self.settings = settings or get_settings()
        self.db_path = db_path if db_path is not None else self.settings.db_path
        self.catalog = tuple(catalog) if catalog is not None else load_catalog()
        self._store: ProgressStore | None = None
        self._auth: AuthSession | None = None
        self._engine: ProgressEngine | None = None
        self._binding: SessionBinding | None = None

    def start(self) -> None:
        """Open the store and bind the engine to the auth session."""
        if self._store is not None:
            return
        self._store = ProgressStore(self.db_path)
        self._auth = AuthSession(self._store)
        self._engine = ProgressEngine(
            self.catalog,
            AsyncProgressStore(self._store),
            load_timeout=self.settings.load_timeout_seconds,
            write_attempts=self.settings.write_retry_attempts,
            write_backoff=self.settings.write_retry_backoff_seconds,
        )
        self._binding = SessionBinding(self._auth, self._engine)
        self._binding.attach()
        logger.debug("Board service started with database %s", self.db_path)

    @property
    def store(self) -> ProgressStore:
        if self._store is None:
            raise NotInitializedError("BoardService.store used before start()")
        return self._store

    @property
    def auth(self) -> AuthSession:
        if self._auth is None:
            raise NotInitializedError("BoardService.auth used before start()")
        return self._auth

    @property
    def engine(self) -> ProgressEngine:
        if self._engine is None:
            raise NotInitializedError("BoardService.engine used before start()")
        return self._engine

    def search(self, query: str) -> list[Project]:
        """Return catalog projects matching a title, skill or tool query."""
        return search_catalog(self.catalog, query)

    async def close(self) -> None:
        """Flush pending writes and close the store."""
        if self._store is None:
            return
        if self._engine is not None:
            await self._engine.flush()
        if self._binding is not None:
            self._binding.detach()
        self._store.close()
        self._store = None
        self._auth = None
        self._engine = None
        self._binding = None
