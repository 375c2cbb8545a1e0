"""Command-line interface for the session counter service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from typing import Sequence

from counterauth.config import Settings, load_settings
from counterauth.database import Database
from counterauth.models import RegistrationRejected, RejectionReason
from counterauth.sessions import SessionManager, SessionStore

logger = logging.getLogger("counterauth.main")

_REJECTION_MESSAGES = {
    RejectionReason.MISSING_FIELDS: "Username and password are required.",
    RejectionReason.PASSWORD_MISMATCH: "Passwords do not match.",
    RejectionReason.USERNAME_TAKEN: "That username is already registered.",
}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Session counter utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create the users and sessions tables")
    subparsers.add_parser("sweep", help="Delete expired sessions once and exit")

    add_user_parser = subparsers.add_parser("add-user", help="Register a user from the shell")
    add_user_parser.add_argument("username", help="Unique username for login")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: COUNTER_HOST or 0.0.0.0)")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listening port (default: PORT or 3000)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "sweep", "add-user"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(
        settings.database_path,
        pool_size=settings.pool_size,
        pool_timeout=settings.pool_timeout,
    )
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, settings: Settings, database: Database, host: str | None, port: int | None) -> None:
    from counterauth.service import create_app
    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port
    logger.info("Starting session counter on http://%s:%s", bind_host, bind_port)

    app = create_app(settings=settings, database=database)
    uvicorn.run(app, host=bind_host, port=bind_port, log_level=settings.log_level.lower())


def _sweep(database: Database) -> int:
    removed = SessionStore(database).sweep_expired()
    print(f"Removed {removed} expired session(s).")
    return removed


def _prompt_for_password() -> tuple[str, str]:
    password = getpass("Password: ")
    confirmation = getpass("Confirm password: ")
    return password, confirmation


def _add_user(database: Database, username: str) -> int:
    password, confirmation = _prompt_for_password()
    manager = SessionManager(database, SessionStore(database))
    result = manager.register(username.strip(), password, confirmation)
    if isinstance(result, RegistrationRejected):
        print(f"Failed to create user: {_REJECTION_MESSAGES[result.reason]}", file=sys.stderr)
        return 1
    print(f"Created user #{result.id}: {result.username}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    args = _parse_args(argv)
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(settings=settings, database=database, host=args.host, port=args.port)
    elif args.command == "sweep":
        _sweep(database)
    elif args.command == "add-user":
        return _add_user(database, args.username)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
