from __future__ import annotations

from smtp_relay.services.ingest.types import InlineImage


def rewrite_inline_references(html: str, images: dict[str, InlineImage]) -> str:
    if not html or not images:
        return html

    # Longest ids first so "img1" cannot clobber part of "cid:img10".
    ordered = sorted(images.items(), key=lambda item: len(item[0]), reverse=True)
    for content_id, image in ordered:
        html = html.replace(f"cid:{content_id}", image.data_uri)
    return html
