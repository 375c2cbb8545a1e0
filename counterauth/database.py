"""SQLite-backed persistence for user accounts and the session table."""
from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from .errors import StorageError
from .models import User
from .security import PasswordHasher

logger = logging.getLogger("counterauth.database")

DEFAULT_POOL_SIZE = 10
DEFAULT_POOL_TIMEOUT = 10.0


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "counter.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


class Database:
    """Wrapper around SQLite holding the ``users`` and ``sessions`` tables.

    At most ``pool_size`` connections are open at once. Callers beyond that wait
    up to ``pool_timeout`` seconds for a slot and then fail with
    :class:`StorageError`, mirroring a bounded connection pool.
    """

    def __init__(
        self,
        path: Path,
        *,
        hasher: Optional[PasswordHasher] = None,
        pool_size: int = DEFAULT_POOL_SIZE,
        pool_timeout: float = DEFAULT_POOL_TIMEOUT,
    ) -> None:
        if pool_size < 1:
            raise ValueError("Connection pool size must be at least 1")
        _ensure_directory(path)
        self._path = path
        self._hasher = hasher or PasswordHasher()
        self._pool_timeout = pool_timeout
        self._slots = threading.BoundedSemaphore(pool_size)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def hasher(self) -> PasswordHasher:
        return self._hasher

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a pooled connection, committing on success and rolling back on error."""

        if not self._slots.acquire(timeout=self._pool_timeout):
            raise StorageError(
                f"Timed out after {self._pool_timeout:g}s waiting for a database connection"
            )
        try:
            try:
                conn = sqlite3.connect(
                    self._path,
                    timeout=self._pool_timeout,
                    check_same_thread=False,
                )
            except sqlite3.Error as exc:
                raise StorageError(f"Unable to open database {self._path}: {exc}") from exc
            conn.row_factory = sqlite3.Row
            try:
                with conn:
                    yield conn
            except sqlite3.Error as exc:
                logger.error("Database query failed: %s", exc)
                raise StorageError(str(exc)) from exc
            finally:
                conn.close()
        finally:
            self._slots.release()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    password TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    expires INTEGER NOT NULL,
                    data TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires);
                """
            )

    # ------------------------------------------------------------------
    # Credential store
    # ------------------------------------------------------------------
    def get_user_by_username(self, username: str) -> Optional[User]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE username = ?",
                (username,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def create_user(self, username: str, password: str) -> User:
        """Insert a new user, storing the hasher's verifier instead of the password.

        Raises :class:`ValueError` when the username is already taken.
        """

        if not username:
            raise ValueError("Username must not be empty")
        if not password:
            raise ValueError("Password must not be empty")

        created_at = _current_timestamp()
        verifier = self._hasher.hash(password)

        try:
            with self.connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO users (username, password, created_at) VALUES (?, ?, ?)",
                    (username, verifier, _serialize_datetime(created_at)),
                )
                user_id = cursor.lastrowid
        except StorageError as exc:
            if isinstance(exc.__cause__, sqlite3.IntegrityError):
                raise ValueError("A user with that username already exists") from exc
            raise

        return User(id=user_id, username=username, password=verifier, created_at=created_at)

    def verify_password(self, user: User, password: str) -> bool:
        return self._hasher.verify(password, user.password)

    def count_users(self) -> int:
        with self.connection() as conn:
            row = conn.execute("SELECT COUNT(*) FROM users").fetchone()
        return int(row[0])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            username=str(row["username"]),
            password=str(row["password"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )


__all__ = ["Database", "resolve_database_path"]
