"""Exception types raised across the board application."""

from __future__ import annotations


class BoardError(Exception):
    """Base class for application errors."""


class AuthError(BoardError):
    """Sign-in, sign-up or sign-out failed; the message is user-facing."""


class LoadError(BoardError):
    """Loading progress for the bound user failed or timed out."""


class PersistenceWriteError(BoardError):
    """A background write could not be persisted after retries."""

    def __init__(self, operation: str, project_id: str, cause: BaseException) -> None:
        """Record which write failed and why."""
        super().__init__(f"{operation} for project '{project_id}' failed: {cause}")
        self.operation = operation
        self.project_id = project_id
        self.cause = cause


class NotInitializedError(BoardError):
    """A service component was used before it was started."""
