from __future__ import annotations

from pathlib import Path

import pytest

from counterauth.config import DEFAULT_SESSION_MINUTES, Settings, load_settings


def test_defaults(tmp_path: Path) -> None:
    settings = load_settings({"COUNTER_DB_PATH": str(tmp_path / "db.sqlite3")})

    assert settings.database_path == (tmp_path / "db.sqlite3").resolve()
    assert settings.default_session_minutes == DEFAULT_SESSION_MINUTES
    assert settings.sweep_interval_seconds == 60
    assert settings.pool_size == 10
    assert settings.port == 3000
    assert settings.secure_cookies is False


def test_environment_overrides_yaml(tmp_path: Path) -> None:
    config_file = tmp_path / "counter.yaml"
    config_file.write_text(
        "default_session_minutes: 30\n"
        "max_session_minutes: 120\n"
        "sweep_interval_seconds: 15\n"
        "secure_cookies: true\n",
        encoding="utf-8",
    )

    settings = load_settings(
        {
            "COUNTER_CONFIG": str(config_file),
            "COUNTER_DB_PATH": str(tmp_path / "db.sqlite3"),
            "COUNTER_SESSION_MAX_MINUTES": "90",
            "PORT": "8080",
        }
    )

    assert settings.default_session_minutes == 30
    assert settings.max_session_minutes == 90
    assert settings.sweep_interval_seconds == 15
    assert settings.secure_cookies is True
    assert settings.port == 8080


def test_unknown_yaml_keys_are_rejected(tmp_path: Path) -> None:
    config_file = tmp_path / "counter.yaml"
    config_file.write_text("session_secret: nope\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_settings({"COUNTER_CONFIG": str(config_file)})


def test_max_must_cover_default(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        Settings(database_path=tmp_path / "db", default_session_minutes=60, max_session_minutes=30)


@pytest.mark.parametrize(
    ("requested", "expected"),
    [
        ("60", 60),
        (" 5 ", 5),
        ("", 1440),
        ("abc", 1440),
        ("0", 1440),
        ("-10", 1440),
        ("100000", 1440),
        (None, 1440),
    ],
)
def test_session_minutes_are_clamped(tmp_path: Path, requested: object, expected: int) -> None:
    settings = Settings(database_path=tmp_path / "db")
    assert settings.session_minutes(requested) == expected


def test_env_file_fills_missing_variables(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        f"COUNTER_DB_PATH={tmp_path / 'from-env-file.sqlite3'}\n"
        "COUNTER_SESSION_MINUTES=15\n"
        "PORT=4000\n",
        encoding="utf-8",
    )

    settings = load_settings({"PORT": "5000"}, env_file=env_file)

    assert settings.database_path == (tmp_path / "from-env-file.sqlite3").resolve()
    assert settings.default_session_minutes == 15
    # Real environment variables win over the .env file.
    assert settings.port == 5000


def test_missing_env_file_is_ignored(tmp_path: Path) -> None:
    settings = load_settings(
        {"COUNTER_DB_PATH": str(tmp_path / "db.sqlite3")},
        env_file=tmp_path / "absent.env",
    )
    assert settings.port == 3000


def test_process_environment_reads_dotenv_from_working_directory(tmp_path: Path, monkeypatch) -> None:
    (tmp_path / ".env").write_text("COUNTER_SWEEP_INTERVAL=5\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("COUNTER_SWEEP_INTERVAL", raising=False)
    monkeypatch.delenv("COUNTER_CONFIG", raising=False)
    monkeypatch.setenv("COUNTER_DB_PATH", str(tmp_path / "db.sqlite3"))

    assert load_settings().sweep_interval_seconds == 5
