"""Command-line interface for the SkillSwap service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from typing import Sequence

from skillswap.config import Settings, load_settings
from skillswap.database import MIN_PASSWORD_LENGTH, Database

logger = logging.getLogger("skillswap.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SkillSwap service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the SkillSwap database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API and notification service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=5000,
        help="Port for the HTTP API (default: 5000)",
    )

    user_parser = subparsers.add_parser("create-user", help="Create a user account interactively")
    user_parser.add_argument("name", help="Display name for the user")
    user_parser.add_argument("email", help="Unique email address for login")

    password_parser = subparsers.add_parser("set-password", help="Reset the password of an existing account")
    password_parser.add_argument("email", help="Email address of the account")

    subparsers.add_parser("list-users", help="List registered users")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "create-user", "set-password", "list-users"}

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


def _serve(*, database: Database, settings: Settings, host: str, port: int) -> None:
    from skillswap.service import create_app
    import uvicorn

    logger.info("Starting SkillSwap API on http://%s:%s", host, port)

    app = create_app(database=database, settings=settings)
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {MIN_PASSWORD_LENGTH} characters): ")
        if len(password) < MIN_PASSWORD_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _create_user(database: Database, name: str, email: str) -> int:
    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.")
        return 1

    try:
        user = database.create_user(name, email, password)
    except ValueError as exc:
        print(f"Failed to create user: {exc}")
        return 1

    print(f"Created user {user.id}: {user.name} <{user.email}>")
    return 0


def _set_password(database: Database, email: str) -> int:
    user = database.get_user_by_email(email)
    if user is None:
        print(f"No account is registered for {email}.")
        return 1

    password = _prompt_for_password()
    if password is None:
        print("Aborted password reset.")
        return 1

    database.set_user_password(user.id, password)
    logger.info("Password reset for user %s", user.id)
    print(f"Updated password for {user.name} <{user.email}>")
    return 0


def _list_users(database: Database) -> None:
    users = database.list_users()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':<24}  {'Name':<24}  {'Email':<32}  Public")
    print("-" * 90)
    for user in users:
        visibility = "yes" if user.is_public else "no"
        print(f"{user.id:<24}  {user.name:<24}  {user.email:<32}  {visibility}")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    settings = load_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(database=database, settings=settings, host=args.host, port=args.port)
    elif args.command == "create-user":
        return _create_user(database, args.name, args.email)
    elif args.command == "set-password":
        return _set_password(database, args.email)
    elif args.command == "list-users":
        _list_users(database)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
