from __future__ import annotations

from smtp_relay.services.ingest.rewrite import rewrite_inline_references
from smtp_relay.services.ingest.types import InlineImage


def _image(content_id: str, payload: bytes, media_type: str = "image/png") -> InlineImage:
    return InlineImage(content_id=content_id, media_type=media_type, payload=payload)


def test_rewrite_replaces_every_occurrence() -> None:
    images = {"img1": _image("img1", b"a")}

    out = rewrite_inline_references('<img src="cid:img1"><img src="cid:img1">', images)

    assert out == '<img src="data:image/png;base64,YQ=="><img src="data:image/png;base64,YQ==">'


def test_rewrite_is_case_sensitive() -> None:
    images = {"img1": _image("img1", b"a")}

    out = rewrite_inline_references('<img src="CID:img1"><img src="cid:IMG1">', images)

    assert out == '<img src="CID:img1"><img src="cid:IMG1">'


def test_rewrite_handles_ids_that_prefix_other_ids() -> None:
    images = {
        "img1": _image("img1", b"a"),
        "img10": _image("img10", b"b", media_type="image/jpeg"),
    }

    out = rewrite_inline_references("cid:img1 cid:img10", images)

    assert out == "data:image/png;base64,YQ== data:image/jpeg;base64,Yg=="


def test_rewrite_without_images_is_a_no_op() -> None:
    html = '<img src="cid:img1">'

    assert rewrite_inline_references(html, {}) == html


def test_rewrite_leaves_unknown_references_alone() -> None:
    images = {"img1": _image("img1", b"a")}

    out = rewrite_inline_references('<img src="cid:other">', images)

    assert out == '<img src="cid:other">'
