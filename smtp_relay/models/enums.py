from __future__ import annotations

import enum


class PartKind(enum.StrEnum):
    multipart = "multipart"
    plain_text = "plain_text"
    html = "html"
    inline_image = "inline_image"
    attachment = "attachment"
    other = "other"
    untyped = "untyped"


class SessionState(enum.StrEnum):
    new = "new"
    authenticated = "authenticated"
    sender_set = "sender_set"
    recipients_set = "recipients_set"
    body_received = "body_received"
    delivered = "delivered"
    rejected = "rejected"
    closed = "closed"


class TransactionOutcome(enum.StrEnum):
    delivered = "delivered"
    rejected_size = "rejected_size"
    rejected_delivery = "rejected_delivery"
    rejected_error = "rejected_error"
