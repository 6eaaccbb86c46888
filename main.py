"""Command-line interface for the embedcal service."""

from __future__ import annotations

import argparse
import logging
import sys
from getpass import getpass
from typing import Sequence

from dotenv import load_dotenv

from embedcal.bootstrap import ensure_admin
from embedcal.config import AppConfig, load_config
from embedcal.database import Database, resolve_database_path

logger = logging.getLogger("embedcal.main")

PASSWORD_MIN_LENGTH = 8


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="embedcal content backend")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the database and the default admin")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: EMBEDCAL_HOST or 0.0.0.0)")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listening port (default: EMBEDCAL_PORT, PORT or 3000)",
    )

    create_parser = subparsers.add_parser("create-user", help="Create a login account")
    create_parser.add_argument("username", help="Unique username for login")
    create_parser.add_argument("--admin", action="store_true", help="Grant the admin flag")

    subparsers.add_parser("list-users", help="List stored accounts")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "create-user", "list-users"}

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


def _initialise_database(config: AppConfig) -> Database:
    db_path = config.database_path or resolve_database_path(None)
    database = Database(db_path)
    database.open()
    database.initialize()
    logger.info("Database initialised at %s", db_path)
    return database


def _serve(database: Database, config: AppConfig, *, host: str | None, port: int | None) -> None:
    from embedcal.service import create_app
    import uvicorn

    bind_host = host or config.host
    bind_port = port or config.port
    if config.uses_insecure_secret:
        logger.warning("Serving with the development session secret; sessions can be forged.")

    app = create_app(database=database, config=config, initialize_database=False)
    logger.info("Starting embedcal on http://%s:%s", bind_host, bind_port)
    uvicorn.run(app, host=bind_host, port=bind_port, log_level="info")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {PASSWORD_MIN_LENGTH} characters): ")
        if len(password) < PASSWORD_MIN_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _create_user(database: Database, username: str, *, is_admin: bool) -> int:
    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.", file=sys.stderr)
        return 1

    try:
        user = database.create_user(username, password, is_admin=is_admin)
    except ValueError as exc:
        print(f"Failed to create user: {exc}", file=sys.stderr)
        return 1

    role = "admin" if user.is_admin else "user"
    print(f"Created {role} #{user.id}: {user.username}")
    return 0


def _list_users(database: Database) -> None:
    users = database.list_users()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Username':<24}  {'Admin':<5}  Created")
    print("-" * 64)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        admin = "yes" if user.is_admin else "no"
        print(f"{user.id:>4}  {user.username:<24}  {admin:<5}  {created}")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    load_dotenv()

    args = _parse_args(argv)
    config = load_config()
    database = _initialise_database(config)

    try:
        if args.command == "serve":
            _serve(database, config, host=args.host, port=args.port)
        elif args.command == "init-db":
            ensure_admin(database, username=config.admin_username, password=config.admin_password)
            print("Database initialisation complete.")
        elif args.command == "create-user":
            return _create_user(database, args.username, is_admin=args.admin)
        elif args.command == "list-users":
            _list_users(database)
    finally:
        database.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
