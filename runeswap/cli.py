"""RuneSwap CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="runeswap",
        description="RuneSwap: Rune/BTC swaps and Rune-collateralized loans",
    )
    parser.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Config directory path (default: config)",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Environment name (default: from RUNESWAP_ENV)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=None, help="Bind host (default: server.host)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: server.port)")

    commands.add_parser("check-config", help="Load and validate configuration")
    commands.add_parser("init-db", help="Create the session token table")
    return parser


def _load_config(config_dir: str, env: str | None):  # type: ignore[no-untyped-def]
    from runeswap.config.loader import ConfigLoader

    loader = ConfigLoader(config_dir, env=env)
    loader.load()
    loader.validate_ranges()
    return loader


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from runeswap.api.app import create_app

    loader = _load_config(args.config_dir, args.env)
    host = args.host or loader.get("server.host", "0.0.0.0")
    port = args.port or int(loader.get("server.port", 8100))
    print(f"Starting RuneSwap API on {host}:{port} (env: {loader.env})")
    uvicorn.run(create_app(config_dir=args.config_dir), host=host, port=port)
    return 0


def _check_config(args: argparse.Namespace) -> int:
    from runeswap.config.loader import ConfigError

    try:
        loader = _load_config(args.config_dir, args.env)
    except ConfigError as exc:
        print(f"Config invalid: {exc}", file=sys.stderr)
        return 1

    missing = [
        name for name in ("SATS_TERMINAL_API_KEY", "LIQUIDIUM_API_KEY", "RUNESWAP_DATABASE_URL")
        if not os.environ.get(name)
    ]
    if missing:
        print(f"Warning: unset environment variables: {', '.join(missing)}", file=sys.stderr)
    print(f"Config OK (env: {loader.env})")
    return 0


async def _init_db() -> None:
    from runeswap.data.token_repository import PostgresTokenRepository

    repository = PostgresTokenRepository()
    await repository.open()
    try:
        await repository.create_tables()
    finally:
        await repository.close()


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.env:
        os.environ["RUNESWAP_ENV"] = args.env

    if args.command == "serve":
        return _serve(args)
    if args.command == "check-config":
        return _check_config(args)
    if args.command == "init-db":
        if not os.environ.get("RUNESWAP_DATABASE_URL"):
            print("RUNESWAP_DATABASE_URL is not set", file=sys.stderr)
            return 1
        asyncio.run(_init_db())
        print("Session token table ready")
        return 0

    return 0


if __name__ == "__main__":
    sys.exit(main())
