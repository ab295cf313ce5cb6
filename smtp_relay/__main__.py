from __future__ import annotations

import argparse
import logging

from pydantic import ValidationError

from smtp_relay import __version__
from smtp_relay.core.config import get_settings
from smtp_relay.core.log import configure_logging
from smtp_relay.smtp.server import run_server_forever

logger = logging.getLogger("smtp_relay")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="smtp-relay")
    parser.add_argument("-v", "--version", action="store_true", help="show version")
    args = parser.parse_args(argv)

    if args.version:
        print(f"smtp-relay {__version__}")
        return

    try:
        settings = get_settings()
    except ValidationError as e:
        configure_logging(level="INFO")
        logger.error("Invalid configuration: %s", e)
        raise SystemExit(2) from e

    configure_logging(level=settings.LOG_LEVEL)
    logger.info("smtp-relay v%s starting", __version__)

    try:
        run_server_forever(settings=settings)
    except (OSError, RuntimeError) as e:
        logger.error("Failed to start SMTP server: %s", e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
