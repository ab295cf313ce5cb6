from __future__ import annotations

import base64
from dataclasses import dataclass, field

DEFAULT_SUBJECT = "No Subject"


@dataclass(frozen=True)
class InlineImage:
    content_id: str
    media_type: str
    payload: bytes

    @property
    def data_uri(self) -> str:
        encoded = base64.b64encode(self.payload).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"


@dataclass(frozen=True)
class ExtractedBody:
    text: str
    html: str
    inline_images: dict[str, InlineImage] = field(default_factory=dict)


@dataclass(frozen=True)
class ParsedEmail:
    subject: str
    text: str
    html: str


@dataclass(frozen=True)
class NormalizedMessage:
    subject: str
    text: str
    html: str
    app_name: str
    recipient: str
