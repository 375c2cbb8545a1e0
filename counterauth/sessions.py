"""Persistent session storage and the login/visit/logout lifecycle."""

from __future__ import annotations

import json
import logging
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Union

from .database import Database
from .errors import SessionNotFound, StorageError
from .models import (
    AuthFailure,
    AuthFailureReason,
    RegistrationRejected,
    RejectionReason,
    Session,
    User,
)

logger = logging.getLogger("counterauth.sessions")

Clock = Callable[[], datetime]
Payload = Dict[str, Any]

_CREATE_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    data: Payload
    expires_at: datetime


class SessionStore:
    """Session rows keyed by an opaque token, stored in the ``sessions`` table.

    Rows whose expiry has passed are invisible to :meth:`get` and :meth:`touch`
    even before :meth:`sweep_expired` removes them.
    """

    def __init__(self, database: Database, *, clock: Optional[Clock] = None) -> None:
        self._database = database
        self._clock = clock or _utcnow

    def now(self) -> datetime:
        return self._clock()

    def create(self, payload: Payload, ttl: timedelta) -> str:
        if ttl <= timedelta(0):
            raise ValueError("Session TTL must be positive")
        expires = _to_millis(self._clock() + ttl)
        data = json.dumps(payload)

        for _ in range(_CREATE_ATTEMPTS):
            session_id = secrets.token_urlsafe(32)
            try:
                with self._database.connection() as conn:
                    conn.execute(
                        "INSERT INTO sessions (session_id, expires, data) VALUES (?, ?, ?)",
                        (session_id, expires, data),
                    )
            except StorageError as exc:
                if isinstance(exc.__cause__, sqlite3.IntegrityError):
                    logger.warning("Session identifier collision, generating a new one")
                    continue
                raise
            return session_id

        raise StorageError("Unable to allocate a unique session identifier")

    def get(self, session_id: str) -> Optional[SessionRecord]:
        if not session_id:
            return None
        with self._database.connection() as conn:
            row = conn.execute(
                "SELECT session_id, expires, data FROM sessions WHERE session_id = ? AND expires > ?",
                (session_id, _to_millis(self._clock())),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def touch(self, session_id: str, mutator: Callable[[Payload], Optional[Payload]]) -> SessionRecord:
        """Load a session, apply ``mutator`` to its payload and write it back.

        The read and the write are separate statements, so concurrent callers may
        overwrite each other's changes.
        """

        record = self.get(session_id)
        if record is None:
            raise SessionNotFound(session_id)

        data = dict(record.data)
        updated = mutator(data)
        if updated is None:
            updated = data

        with self._database.connection() as conn:
            cursor = conn.execute(
                "UPDATE sessions SET data = ? WHERE session_id = ? AND expires > ?",
                (json.dumps(updated), session_id, _to_millis(self._clock())),
            )
            if cursor.rowcount == 0:
                raise SessionNotFound(session_id)

        return SessionRecord(session_id=session_id, data=updated, expires_at=record.expires_at)

    def destroy(self, session_id: str) -> None:
        if not session_id:
            return
        with self._database.connection() as conn:
            conn.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))

    def sweep_expired(self) -> int:
        with self._database.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM sessions WHERE expires <= ?",
                (_to_millis(self._clock()),),
            )
            return cursor.rowcount

    def count(self) -> int:
        with self._database.connection() as conn:
            row = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()
        return int(row[0])

    def _row_to_record(self, row: sqlite3.Row) -> SessionRecord:
        raw = row["data"]
        return SessionRecord(
            session_id=str(row["session_id"]),
            data=json.loads(raw) if raw else {},
            expires_at=_from_millis(int(row["expires"])),
        )


class SessionManager:
    """Issue, inspect, and revoke sessions on top of the credential store."""

    def __init__(self, database: Database, store: SessionStore) -> None:
        self._database = database
        self._store = store

    @property
    def store(self) -> SessionStore:
        return self._store

    def login(self, username: str, password: str, ttl_minutes: int) -> Union[Session, AuthFailure]:
        if ttl_minutes <= 0:
            raise ValueError("Session lifetime must be at least one minute")

        user = self._database.get_user_by_username(username)
        if user is None:
            logger.warning("Login rejected: unknown user %r", username)
            return AuthFailure(AuthFailureReason.USER_NOT_FOUND)
        if not self._database.verify_password(user, password):
            logger.warning("Login rejected: wrong password for %r", username)
            return AuthFailure(AuthFailureReason.BAD_PASSWORD)

        ttl = timedelta(milliseconds=ttl_minutes * 60 * 1000)
        payload = {
            "user": user.to_snapshot(),
            "count": 0,
            "maxAge": int(ttl.total_seconds()),
        }
        session_id = self._store.create(payload, ttl)
        logger.info("User %s signed in for %s minute(s)", user.id, ttl_minutes)

        record = self._store.get(session_id)
        if record is None:
            raise StorageError("Session vanished immediately after creation")
        return self._record_to_session(record)

    def resolve(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        record = self._store.get(session_id)
        if record is None:
            return None
        return self._record_to_session(record)

    def record_visit(self, session_id: str) -> Optional[int]:
        def _increment(data: Payload) -> Payload:
            data["count"] = int(data.get("count", 0)) + 1
            return data

        try:
            record = self._store.touch(session_id, _increment)
        except SessionNotFound:
            return None
        return int(record.data["count"])

    def logout(self, session_id: Optional[str]) -> None:
        if session_id:
            self._store.destroy(session_id)

    def register(
        self,
        username: str,
        password: str,
        confirm_password: str,
    ) -> Union[User, RegistrationRejected]:
        if not username or not password or not confirm_password:
            return RegistrationRejected(RejectionReason.MISSING_FIELDS)
        if password != confirm_password:
            return RegistrationRejected(RejectionReason.PASSWORD_MISMATCH)
        if self._database.get_user_by_username(username) is not None:
            return RegistrationRejected(RejectionReason.USERNAME_TAKEN)

        try:
            user = self._database.create_user(username, password)
        except ValueError:
            # Lost a race with a concurrent registration of the same name.
            return RegistrationRejected(RejectionReason.USERNAME_TAKEN)

        logger.info("Registered user %s (%s)", user.id, user.username)
        return user

    def _record_to_session(self, record: SessionRecord) -> Session:
        data = record.data
        return Session(
            id=record.session_id,
            user=User.from_snapshot(data["user"]),
            visit_count=int(data.get("count", 0)),
            max_age_seconds=int(data.get("maxAge", 0)),
            expires_at=record.expires_at,
        )


__all__ = ["SessionManager", "SessionRecord", "SessionStore"]
