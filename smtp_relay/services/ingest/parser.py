from __future__ import annotations

import logging
from email import policy
from email.errors import MessageError
from email.message import Message
from email.parser import BytesParser

from smtp_relay.models.enums import PartKind
from smtp_relay.services.ingest.decoder import decode_part_bytes, decode_part_text
from smtp_relay.services.ingest.rewrite import rewrite_inline_references
from smtp_relay.services.ingest.types import (
    DEFAULT_SUBJECT,
    ExtractedBody,
    InlineImage,
    ParsedEmail,
)

logger = logging.getLogger("smtp_relay")

MAX_MIME_DEPTH = 32


def _media_type(part: Message) -> str | None:
    raw = part.get("Content-Type")
    if raw is None:
        return None
    value = str(raw).split(";", 1)[0].strip().lower()
    maintype, sep, subtype = value.partition("/")
    if not sep or not maintype or not subtype or "/" in subtype:
        return None
    return value


def _content_id(part: Message) -> str:
    return str(part.get("Content-ID") or "").strip().strip("<>")


def _is_attachment(part: Message) -> bool:
    disposition = str(part.get("Content-Disposition") or "").strip().lower()
    return disposition.startswith("attachment")


def classify_part(part: Message, *, in_multipart: bool = False) -> PartKind:
    """Classify a MIME entity for the walker.

    The attachment and inline-image kinds only exist for children of a
    multipart; a top-level entity is always read as a body.
    """
    media_type = _media_type(part)

    if in_multipart:
        if _is_attachment(part):
            return PartKind.attachment
        if media_type is not None and media_type.startswith("image/") and _content_id(part):
            return PartKind.inline_image

    if media_type is None:
        return PartKind.untyped
    if media_type.startswith("multipart/"):
        return PartKind.multipart
    if media_type == "text/plain":
        return PartKind.plain_text
    if media_type == "text/html":
        return PartKind.html
    return PartKind.other


def _inline_image(part: Message) -> InlineImage:
    return InlineImage(
        content_id=_content_id(part),
        media_type=_media_type(part) or "application/octet-stream",
        payload=decode_part_bytes(part),
    )


def _walk(part: Message, *, images: dict[str, InlineImage], depth: int) -> tuple[str, str]:
    kind = classify_part(part)

    if kind == PartKind.plain_text:
        return decode_part_text(part), ""
    if kind == PartKind.html:
        return "", decode_part_text(part)
    if kind != PartKind.multipart:
        # Untyped and unknown media types go to the text channel, never html.
        return decode_part_text(part), ""

    if depth >= MAX_MIME_DEPTH:
        logger.warning("Skipping multipart nested deeper than %d levels", MAX_MIME_DEPTH)
        return "", ""

    children = part.get_payload()
    if not part.is_multipart() or not isinstance(children, list):
        return "", ""

    text = ""
    html = ""
    for child in children:
        child_kind = classify_part(child, in_multipart=True)
        if child_kind == PartKind.attachment:
            continue
        if child_kind == PartKind.inline_image:
            image = _inline_image(child)
            images[image.content_id] = image
            continue

        child_text, child_html = _walk(child, images=images, depth=depth + 1)
        # First text part wins, last html part wins.
        if child_text and not text:
            text = child_text
        if child_html:
            html = child_html

    return text, html


def extract_bodies(message: Message) -> ExtractedBody:
    images: dict[str, InlineImage] = {}
    text, html = _walk(message, images=images, depth=0)

    if html and images:
        html = rewrite_inline_references(html, images)
    if not text and html:
        text = html

    return ExtractedBody(text=text, html=html, inline_images=images)


def _extract_subject(message: Message) -> str:
    value = message.get("Subject")
    subject = str(value).strip() if value is not None else ""
    return subject or DEFAULT_SUBJECT


def parse_raw_email(raw: bytes) -> ParsedEmail:
    try:
        msg = BytesParser(policy=policy.default).parsebytes(raw)
        subject = _extract_subject(msg)
        body = extract_bodies(msg)
    # RecursionError: the stdlib parser recurses once per nesting level, well
    # before MAX_MIME_DEPTH is consulted.
    except (MessageError, LookupError, TypeError, ValueError, RecursionError) as e:
        logger.warning("Failed to parse email, relaying raw body as text: %s", e)
        return ParsedEmail(
            subject=DEFAULT_SUBJECT,
            text=raw.decode("utf-8", errors="replace"),
            html="",
        )

    return ParsedEmail(subject=subject, text=body.text.strip(), html=body.html.strip())
