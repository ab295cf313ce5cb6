from __future__ import annotations

import pytest
from pydantic import ValidationError

from smtp_relay.core.config import Settings, get_settings


def test_settings_defaults(relay_env) -> None:
    settings = get_settings()

    assert settings.SMTP_PORT == 587
    assert settings.MAX_MESSAGE_BYTES == 10 * 1024 * 1024
    assert settings.MAX_RECIPIENTS == 50
    assert settings.DATA_WORKERS == 64
    assert settings.DELIVERY_TIMEOUT_SECONDS == 30.0
    assert settings.ORCHESTRATOR_URL == "https://orchestrator.test/service/pcs"
    assert settings.USER_JWT == "test-jwt"


def test_orchestrator_url_trailing_slash_is_stripped(relay_env, monkeypatch) -> None:
    monkeypatch.setenv("ORCHESTRATOR_URL", "https://orchestrator.test/service/pcs/")
    get_settings.cache_clear()

    assert get_settings().ORCHESTRATOR_URL == "https://orchestrator.test/service/pcs"


def test_missing_credential_is_fatal(monkeypatch) -> None:
    monkeypatch.setenv("ORCHESTRATOR_URL", "https://orchestrator.test")
    monkeypatch.delenv("USER_JWT", raising=False)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("USER_JWT", "   "),
        ("ORCHESTRATOR_URL", ""),
        ("ORCHESTRATOR_URL", "orchestrator.test"),
        ("SMTP_PORT", "0"),
        ("SMTP_PORT", "70000"),
        ("MAX_MESSAGE_BYTES", "0"),
        ("DATA_WORKERS", "0"),
    ],
)
def test_invalid_values_are_rejected(relay_env, monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_log_level_is_normalized(relay_env, monkeypatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", " debug ")

    assert Settings(_env_file=None).LOG_LEVEL == "DEBUG"
