from __future__ import annotations

import json
import logging
import secrets
import sys

logger = logging.getLogger("smtp_relay")


def configure_logging(*, level: str) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    resolved = logging.getLevelName(level.upper())
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)


def log_event(event: str, *, level: int = logging.INFO, **fields: object) -> None:
    if not logger.isEnabledFor(level):
        return
    logger.log(
        level,
        json.dumps(
            {"event": event, **fields},
            separators=(",", ":"),
            sort_keys=True,
            default=str,
        ),
    )


def new_session_id(*, nbytes: int = 9) -> str:
    return secrets.token_urlsafe(nbytes)
