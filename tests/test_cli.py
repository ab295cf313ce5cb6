from __future__ import annotations

import logging

import pytest

from smtp_relay import __version__
from smtp_relay.__main__ import main
from smtp_relay.core.config import get_settings


def test_version_flag_prints_version(capsys) -> None:
    main(["--version"])

    assert capsys.readouterr().out.strip() == f"smtp-relay {__version__}"


def test_missing_configuration_exits_before_serving(monkeypatch) -> None:
    monkeypatch.delenv("USER_JWT", raising=False)
    monkeypatch.delenv("ORCHESTRATOR_URL", raising=False)
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    get_settings.cache_clear()
    try:
        with pytest.raises(SystemExit) as exc_info:
            main([])
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
        get_settings.cache_clear()

    assert exc_info.value.code == 2
