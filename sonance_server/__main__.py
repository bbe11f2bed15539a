# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Command line entry point. Run: python -m sonance_server --media ~/Music"""

import argparse
import logging
import sys

import uvicorn

from sonance_server import APP_NAME, __version__
from sonance_server.config import Settings


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sonance-server",
        description=f"{APP_NAME}: personal music library server.",
    )
    parser.add_argument("--host", help="bind address, host:port (default :8080)")
    parser.add_argument("--media", help="music library root directory")
    parser.add_argument("--db", help="SQLAlchemy database URL")
    parser.add_argument("--timeout", type=float, help="shutdown grace period in seconds (default 5)")
    parser.add_argument(
        "--no-root",
        action="store_true",
        default=None,
        help="do not create the initial admin user",
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_settings(argv: list[str] | None = None) -> Settings:
    """Environment / .env settings, overridden by any flags given."""
    args = create_parser().parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if v is not None}
    return Settings(**overrides)


def main(argv: list[str] | None = None) -> int:
    settings = load_settings(argv)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    logger = logging.getLogger("sonance_server")

    if not settings.media.is_dir():
        logger.error("media folder %s does not exist", settings.media)
        return 1

    # Imported here so logging is configured before the app modules load
    from sonance_server.main import create_app

    host, port = settings.bind_address()
    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        log_config=None,
        timeout_graceful_shutdown=int(settings.timeout) or None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
