"""Exceptions shared by the storage and session layers."""

from __future__ import annotations


class StorageError(RuntimeError):
    """Raised when the database is unreachable or a query fails."""


class SessionNotFound(KeyError):
    """Raised when a session identifier is absent or its session has expired."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return "Session not found or expired"


__all__ = ["SessionNotFound", "StorageError"]
