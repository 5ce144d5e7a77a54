"""Command-line interface for the support portal service."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import Sequence

from portal.config import PortalSettings
from portal.database import Database

logger = logging.getLogger("portal.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Support portal utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the portal database")
    subparsers.add_parser(
        "sweep-sessions",
        help="Delete expired sessions once and exit",
    )

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP portal service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP API (default: 8000)",
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

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "sweep-sessions"}

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


def _initialise_database(settings: PortalSettings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    database.ensure_default_application_links()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _sweep_sessions(settings: PortalSettings, database: Database) -> int:
    from portal.directory import FileDirectory
    from portal.identity import IdentityStore
    from portal.sessions import SessionManager

    identities = IdentityStore(database, FileDirectory(settings.directory_path))
    sessions = SessionManager(database, identities, ttl=settings.session_ttl)
    removed = sessions.sweep_expired()
    logger.info("Removed %s expired session(s)", removed)
    return removed


def _serve(
    *,
    settings: PortalSettings,
    database: Database,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from portal.service import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting support portal on %s://%s:%s", protocol, host, port)

    app = create_app(settings=settings, database=database)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)
    try:
        settings = PortalSettings.from_env()
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(
            settings=settings,
            database=database,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "sweep-sessions":
        removed = _sweep_sessions(settings, database)
        print(f"Removed {removed} expired session(s).")
    elif args.command == "init-db":
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
