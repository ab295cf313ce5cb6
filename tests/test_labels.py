from __future__ import annotations

import pytest

from smtp_relay.services.ingest.labels import app_name_from_sender, sanitize_app_name


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("MyApp_123!", "myapp123"),
        ("billing-service", "billing-service"),
        ("", "app"),
        ("!!!___", "app"),
        (None, "app"),
        ("a" * 30, "a" * 20),
    ],
)
def test_sanitize_app_name(raw: str | None, expected: str) -> None:
    assert sanitize_app_name(raw) == expected


def test_app_name_from_sender_uses_local_part() -> None:
    assert app_name_from_sender("Nextcloud.Notify@apps.internal") == "nextcloudnotify"
    assert app_name_from_sender("<photos@apps.internal>") == "photos"


def test_app_name_from_sender_defaults_without_sender() -> None:
    assert app_name_from_sender("") == "app"
    assert app_name_from_sender(None) == "app"
    assert app_name_from_sender("<>") == "app"
