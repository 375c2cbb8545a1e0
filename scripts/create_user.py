import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from counterauth.config import load_settings
from counterauth.database import Database, resolve_database_path
from counterauth.models import RegistrationRejected
from counterauth.sessions import SessionManager, SessionStore


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a session counter user")
    parser.add_argument("username", help="Unique username for login")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to COUNTER_DB_PATH or data/counter.sqlite3)",
    )
    return parser.parse_args(argv)


def prompt_for_password() -> tuple[str, str]:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if not password:
            print("Password must not be empty.", file=sys.stderr)
            continue
        return password, confirm
    raise SystemExit("Failed to set password after three attempts.")


def main(argv=None) -> int:
    args = parse_args(argv)
    password, confirm = prompt_for_password()

    settings = load_settings()
    db_path = resolve_database_path(args.db_path) if args.db_path else settings.database_path

    database = Database(db_path)
    database.initialize()

    manager = SessionManager(database, SessionStore(database))
    result = manager.register(args.username.strip(), password, confirm)
    if isinstance(result, RegistrationRejected):
        print(f"Error: registration rejected ({result.reason.value})", file=sys.stderr)
        return 1

    print(f"Created user #{result.id}: {result.username}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
