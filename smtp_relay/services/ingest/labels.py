from __future__ import annotations

import re

DEFAULT_APP_NAME = "app"
MAX_APP_NAME_LENGTH = 20

_DISALLOWED_RE = re.compile(r"[^a-z0-9-]")


def sanitize_app_name(name: str | None) -> str:
    s = _DISALLOWED_RE.sub("", (name or "").lower())
    s = s[:MAX_APP_NAME_LENGTH]
    return s or DEFAULT_APP_NAME


def app_name_from_sender(mail_from: str | None) -> str:
    address = (mail_from or "").strip().strip("<>")
    if not address:
        return DEFAULT_APP_NAME
    local_part = address.split("@", 1)[0]
    return sanitize_app_name(local_part)
