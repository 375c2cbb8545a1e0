from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from counterauth.database import Database
from counterauth.errors import SessionNotFound, StorageError
from counterauth.models import (
    AuthFailure,
    AuthFailureReason,
    RegistrationRejected,
    RejectionReason,
    Session,
    User,
)
from counterauth.sessions import SessionManager, SessionStore


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "sessions.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(database: Database, clock: FakeClock) -> SessionStore:
    return SessionStore(database, clock=clock)


@pytest.fixture()
def manager(database: Database, store: SessionStore) -> SessionManager:
    return SessionManager(database, store)


# ----------------------------------------------------------------------
# Session store
# ----------------------------------------------------------------------
def test_create_and_get_round_trip(store: SessionStore, clock: FakeClock) -> None:
    session_id = store.create({"count": 0}, timedelta(minutes=5))

    record = store.get(session_id)
    assert record is not None
    assert record.data == {"count": 0}
    assert record.expires_at == clock.now + timedelta(minutes=5)


def test_identifiers_are_unique(store: SessionStore) -> None:
    ids = {store.create({}, timedelta(minutes=1)) for _ in range(20)}
    assert len(ids) == 20


def test_expired_session_is_invisible_before_sweep(store: SessionStore, clock: FakeClock) -> None:
    session_id = store.create({"count": 0}, timedelta(minutes=1))
    clock.advance(minutes=1)

    assert store.get(session_id) is None
    # Still stored until the sweeper removes it.
    assert store.count() == 1


def test_touch_applies_mutator(store: SessionStore) -> None:
    session_id = store.create({"count": 0}, timedelta(minutes=1))

    record = store.touch(session_id, lambda data: {**data, "count": data["count"] + 5})
    assert record.data["count"] == 5
    assert store.get(session_id).data["count"] == 5


def test_touch_missing_or_expired_raises(store: SessionStore, clock: FakeClock) -> None:
    with pytest.raises(SessionNotFound):
        store.touch("does-not-exist", lambda data: data)

    session_id = store.create({"count": 0}, timedelta(minutes=1))
    clock.advance(minutes=2)
    with pytest.raises(SessionNotFound):
        store.touch(session_id, lambda data: data)


def test_destroy_is_idempotent(store: SessionStore) -> None:
    session_id = store.create({}, timedelta(minutes=1))
    store.destroy(session_id)
    store.destroy(session_id)
    store.destroy("never-existed")
    assert store.get(session_id) is None


def test_sweep_removes_only_expired(store: SessionStore, clock: FakeClock) -> None:
    short = store.create({"name": "short"}, timedelta(minutes=1))
    boundary = store.create({"name": "boundary"}, timedelta(minutes=5))
    long = store.create({"name": "long"}, timedelta(minutes=10))

    clock.advance(minutes=5)

    assert store.sweep_expired() == 2
    assert store.sweep_expired() == 0
    assert store.get(short) is None
    assert store.get(boundary) is None
    assert store.get(long) is not None
    assert store.count() == 1


def test_create_rejects_non_positive_ttl(store: SessionStore) -> None:
    with pytest.raises(ValueError):
        store.create({}, timedelta(0))


# ----------------------------------------------------------------------
# Session lifecycle
# ----------------------------------------------------------------------
def test_register_then_login(manager: SessionManager, clock: FakeClock) -> None:
    user = manager.register("alice", "secret", "secret")
    assert isinstance(user, User)

    session = manager.login("alice", "secret", 60)
    assert isinstance(session, Session)
    assert session.visit_count == 0
    assert session.max_age_seconds == 3600
    assert session.expires_at == clock.now + timedelta(milliseconds=3_600_000)
    assert session.user.username == "alice"
    assert session.user.id == user.id


def test_register_rejects_mismatched_passwords(manager: SessionManager, database: Database) -> None:
    result = manager.register("alice", "secret", "different")

    assert result == RegistrationRejected(RejectionReason.PASSWORD_MISMATCH)
    assert database.get_user_by_username("alice") is None
    assert database.count_users() == 0


def test_register_rejects_existing_username(manager: SessionManager, database: Database) -> None:
    manager.register("alice", "secret", "secret")
    result = manager.register("alice", "other", "other")

    assert result == RegistrationRejected(RejectionReason.USERNAME_TAKEN)
    assert database.count_users() == 1
    # The original password still works.
    assert isinstance(manager.login("alice", "secret", 5), Session)


def test_register_requires_all_fields(manager: SessionManager) -> None:
    result = manager.register("alice", "", "")
    assert result == RegistrationRejected(RejectionReason.MISSING_FIELDS)


def test_login_unknown_user(manager: SessionManager, store: SessionStore) -> None:
    result = manager.login("nobody", "secret", 5)
    assert result == AuthFailure(AuthFailureReason.USER_NOT_FOUND)
    assert store.count() == 0


def test_login_wrong_password_creates_no_session(manager: SessionManager, store: SessionStore) -> None:
    manager.register("alice", "secret", "secret")

    result = manager.login("alice", "wrong", 5)
    assert result == AuthFailure(AuthFailureReason.BAD_PASSWORD)
    assert store.count() == 0


def test_each_login_creates_a_new_session(manager: SessionManager, store: SessionStore) -> None:
    manager.register("alice", "secret", "secret")
    first = manager.login("alice", "secret", 5)
    second = manager.login("alice", "secret", 5)

    assert first.id != second.id
    assert store.count() == 2


def test_record_visit_increments_by_one(manager: SessionManager) -> None:
    manager.register("alice", "secret", "secret")
    session = manager.login("alice", "secret", 5)

    assert manager.record_visit(session.id) == 1
    assert manager.record_visit(session.id) == 2
    assert manager.record_visit(session.id) == 3
    assert manager.resolve(session.id).visit_count == 3


def test_record_visit_does_not_extend_expiry(manager: SessionManager, clock: FakeClock) -> None:
    manager.register("alice", "secret", "secret")
    session = manager.login("alice", "secret", 10)

    clock.advance(minutes=9)
    assert manager.record_visit(session.id) == 1
    assert manager.resolve(session.id).expires_at == session.expires_at

    clock.advance(minutes=1)
    assert manager.resolve(session.id) is None


def test_record_visit_on_missing_session(manager: SessionManager, store: SessionStore, clock: FakeClock) -> None:
    assert manager.record_visit("missing") is None
    assert store.count() == 0

    manager.register("alice", "secret", "secret")
    session = manager.login("alice", "secret", 1)
    clock.advance(minutes=2)
    assert manager.record_visit(session.id) is None
    assert store.count() == 1


def test_login_rejects_non_positive_lifetime(manager: SessionManager) -> None:
    manager.register("alice", "secret", "secret")
    with pytest.raises(ValueError):
        manager.login("alice", "secret", 0)


def test_full_scenario(manager: SessionManager, store: SessionStore, clock: FakeClock) -> None:
    assert isinstance(manager.register("alice", "secret", "secret"), User)

    session = manager.login("alice", "secret", 60)
    assert isinstance(session, Session)
    assert session.visit_count == 0
    assert session.expires_at - clock.now == timedelta(milliseconds=3_600_000)

    assert manager.record_visit(session.id) == 1

    manager.logout(session.id)
    assert store.get(session.id) is None
    assert manager.resolve(session.id) is None


def test_create_retries_on_identifier_collision(store: SessionStore, monkeypatch) -> None:
    first = store.create({"name": "first"}, timedelta(minutes=5))
    candidates = iter([first, "fresh-identifier"])
    monkeypatch.setattr("counterauth.sessions.secrets.token_urlsafe", lambda nbytes=None: next(candidates))

    second = store.create({"name": "second"}, timedelta(minutes=5))

    assert second == "fresh-identifier"
    assert store.get(first).data == {"name": "first"}
    assert store.count() == 2


def test_create_gives_up_after_repeated_collisions(store: SessionStore, monkeypatch) -> None:
    taken = store.create({}, timedelta(minutes=5))
    monkeypatch.setattr("counterauth.sessions.secrets.token_urlsafe", lambda nbytes=None: taken)

    with pytest.raises(StorageError):
        store.create({}, timedelta(minutes=5))
    assert store.count() == 1
