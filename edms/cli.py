"""
EDMS CLI — bootstrap and management commands.

Commands:
- edms init-db       — Create the database tables
- edms serve         — Start the HTTP API under uvicorn
- edms check-config  — Validate edms.yaml (and environment overrides)
- edms users         — List the demo user directory (passwords masked)
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from edms.engine.errors import EDMSConfigError

logger = logging.getLogger("edms.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="edms",
        description="EDMS — role-based document management",
    )
    parser.add_argument("--config", default=None, help="Path to edms.yaml (default: auto-discover)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create database tables")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    serve_parser.add_argument("--no-file-logs", action="store_true", help="Disable JSONL event logs")

    subparsers.add_parser("check-config", help="Validate configuration")
    subparsers.add_parser("users", help="List directory users")

    args = parser.parse_args(argv)

    if args.command == "init-db":
        return cmd_init_db(args)
    elif args.command == "serve":
        return cmd_serve(args)
    elif args.command == "check-config":
        return cmd_check_config(args)
    elif args.command == "users":
        return cmd_users(args)
    else:
        parser.print_help()
        return 0


def _load(args: argparse.Namespace):
    from edms.engine.config import load_config

    try:
        return load_config(args.config)
    except EDMSConfigError as e:
        print(f"[ERROR] {e.message}")
        for detail in e.validation_errors or []:
            print(f"  - {detail}")
        return None


def cmd_init_db(args: argparse.Namespace) -> int:
    from edms.db.session import close_db, init_db

    config = _load(args)
    if config is None:
        return 1
    init_db(config.database.url, create_tables=True)
    close_db()
    print(f"[OK] Tables created at {config.database.url}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from edms.api.server import create_app

    config = _load(args)
    if config is None:
        return 1
    logging.basicConfig(level=config.logging.level)
    app = create_app(config, file_logging=not args.no_file_logs)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def cmd_check_config(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1
    print(f"[OK] {config.name} {config.version} ({config.environment})")
    print(f"  database:  {config.database.url}")
    print(f"  storage:   {config.storage.path} (max {config.storage.max_file_size_bytes} bytes)")
    print(f"  jwt:       issuer={config.security.jwt_issuer} audience={config.security.jwt_audience}")
    return 0


def cmd_users(args: argparse.Namespace) -> int:
    from edms.engine.identity import InMemoryUserDirectory

    directory = InMemoryUserDirectory(bcrypt_rounds=4)
    for user in directory.list_users():
        row = user.to_public_dict()
        print(f"{row['user_id']:>3}  {row['email']:<28} {row['role']:<12} {row['password']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
