"""Command-line interface for the user administration service."""

from __future__ import annotations

import argparse
import logging
import sys
from getpass import getpass
from typing import Sequence

from useradmin.catalog import MessageCatalog, load_catalog
from useradmin.config import Settings, load_settings
from useradmin.database import Database
from useradmin.errors import DuplicateEmailError, ValidationFailed
from useradmin.models import Role
from useradmin.security import PASSWORD_MIN_LENGTH
from useradmin.validation import UserForm, validate_form

logger = logging.getLogger("useradmin.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User administration utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the user database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP management interface")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the web interface")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the web interface (default: 8000)",
    )

    create_parser = subparsers.add_parser(
        "create-user", help="Create an account from the command line"
    )
    create_parser.add_argument("name", help="Display name for the user")
    create_parser.add_argument("email", help="Unique email address for login")
    create_parser.add_argument(
        "--role",
        choices=[role.value for role in Role],
        default=Role.ADMIN.value,
        help="Role for the new account (default: admin)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "create-user"}

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
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {PASSWORD_MIN_LENGTH} characters): ")
        if len(password) < PASSWORD_MIN_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirm = getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.")
            continue
        return password
    return None


def _create_user(
    database: Database,
    catalog: MessageCatalog,
    *,
    name: str,
    email: str,
    role: str,
) -> int:
    try:
        form = validate_form(UserForm, {"name": name, "email": email, "role": role}, catalog)
    except ValidationFailed as exc:
        for field, messages in exc.errors.items():
            for message in messages:
                print(f"Error ({field}): {message}", file=sys.stderr)
        return 1

    password = _prompt_for_password()
    if password is None:
        print("Failed to set password after three attempts.", file=sys.stderr)
        return 1

    try:
        user = database.create_user(form.name, form.email, form.role, password=password)
    except DuplicateEmailError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}> ({user.role.value})")
    return 0


def _serve(*, settings: Settings, database: Database, host: str, port: int) -> None:
    from useradmin.web import create_app
    import uvicorn

    logger.info("Starting user administration on http://%s:%s", host, port)

    app = create_app(database=database, settings=settings)
    uvicorn.run(app, host=host, port=port, log_level="info", proxy_headers=False)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    settings = load_settings()
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(settings=settings, database=database, host=args.host, port=args.port)
    elif args.command == "create-user":
        catalog = load_catalog(settings.locale)
        return _create_user(database, catalog, name=args.name, email=args.email, role=args.role)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
