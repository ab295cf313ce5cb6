from __future__ import annotations

import codecs
import logging
from email.message import Message

logger = logging.getLogger("smtp_relay")

DEFAULT_CHARSET = "utf-8"


def resolve_charset(part: Message) -> str:
    charset = part.get_content_charset()
    if not charset:
        return DEFAULT_CHARSET
    try:
        return codecs.lookup(charset).name
    except LookupError:
        return DEFAULT_CHARSET


def decode_part_bytes(part: Message) -> bytes:
    """Return the part body with its transfer encoding undone.

    A ``message/rfc822`` part has no byte payload of its own, so the enclosed
    message is serialized instead.
    """
    if part.is_multipart():
        children = part.get_payload()
        if not isinstance(children, list):
            return b""
        return b"".join(child.as_bytes() for child in children)

    payload = part.get_payload(decode=True)
    if payload is None:
        return b""
    return payload


def decode_part_text(part: Message) -> str:
    charset = resolve_charset(part)
    payload = decode_part_bytes(part)
    try:
        return payload.decode(charset)
    except UnicodeDecodeError as e:
        logger.debug(
            "Dropping undecodable %s part (%s): %s",
            part.get_content_type(),
            charset,
            e.reason,
        )
        return ""
