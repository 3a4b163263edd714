"""Command-line interface for the workshop registration service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from getpass import getpass
from typing import Sequence

from workshop.database import Database, resolve_database_path

logger = logging.getLogger("workshop.main")

PASSWORD_MIN_LENGTH = 12


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Workshop registration utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the registration database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the service")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port for the HTTP service (default: 8080)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    create_admin_parser = subparsers.add_parser("create-admin", help="Create an administrator account")
    create_admin_parser.add_argument("name", help="Display name for the administrator")
    create_admin_parser.add_argument("email", help="Unique email address used to sign in")

    subparsers.add_parser("admin", help="Launch the interactive administration console")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "admin", "init-db", "create-admin"}

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


def _initialise_database() -> Database:
    db_path = resolve_database_path(os.getenv("WORKSHOP_DB_PATH"))
    database = Database(db_path)
    database.initialize()
    logger.info("Database initialised at %s", db_path)
    return database


def _serve(
    *,
    database: Database,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from workshop.application import create_application
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting workshop service on %s://%s:%s", protocol, host, port)

    app = create_application(database_path=str(database.path))
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _run_admin_cli(database: Database) -> None:
    """Provide an interactive console for administrators."""

    print("Workshop Administration Console")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) List administrators")
            print("  2) Add a new administrator")
            print("  3) Show registration statistics")
            print("  4) Exit")

            choice = input("Enter choice [1-4]: ").strip()

            if choice == "1":
                _list_admins(database)
            elif choice == "2":
                _add_admin(database)
            elif choice == "3":
                _show_stats(database)
            elif choice == "4":
                print("Goodbye!")
                return
            else:
                print("Invalid selection. Please choose a number from the menu.\n")

            print()
    except KeyboardInterrupt:
        print("\nExiting administration console.")


def _list_admins(database: Database) -> None:
    admins = database.list_admins()
    if not admins:
        print("No administrators are currently registered.")
        return

    print(f"{len(admins)} administrator(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  Created")
    print("-" * 80)
    for admin in admins:
        created = admin.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{admin.id:>4}  {admin.name:<24}  {admin.email:<32}  {created}")


def _add_admin(database: Database) -> None:
    print("\nCreate a new administrator (leave the name blank to cancel).")
    name = input("Name: ").strip()
    if not name:
        print("Administrator creation cancelled.")
        return

    email = input("Email address: ").strip()
    if not email:
        print("An email address is required.")
        return

    password = _prompt_for_password()
    if password is None:
        print("Aborted creating administrator.")
        return

    try:
        admin = database.create_admin(name, email, password)
    except ValueError as exc:
        print(f"Failed to create administrator: {exc}")
        return

    print(f"Created administrator #{admin.id}: {admin.name} <{admin.email}>")


def _show_stats(database: Database) -> None:
    total = database.count_attendees()
    print(f"{total} attendee(s) registered.")
    breakdown = database.designation_breakdown()
    if not breakdown:
        print("No registrations yet.")
        return
    for entry in breakdown:
        share = round(entry.count * 100 / total) if total else 0
        print(f"  {entry.designation:<24} {entry.count:>5}  ({share}%)")
    print(f"{len(database.list_speakers())} speaker(s), {len(database.list_sessions())} session(s) scheduled.")


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


def _create_admin(database: Database, name: str, email: str) -> int:
    password = _prompt_for_password()
    if password is None:
        print("Failed to set password after three attempts.", file=sys.stderr)
        return 1
    try:
        admin = database.create_admin(name, email, password)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    logger.info("Created administrator #%s <%s>", admin.id, admin.email)
    print(f"Created administrator #{admin.id}: {admin.name} <{admin.email}>")
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    database = _initialise_database()

    if args.command == "serve":
        _serve(
            database=database,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "admin":
        _run_admin_cli(database)
    elif args.command == "create-admin":
        status = _create_admin(database, args.name, args.email)
        if status:
            raise SystemExit(status)
    elif args.command == "init-db":
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
