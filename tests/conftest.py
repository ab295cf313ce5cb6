from __future__ import annotations

import socket
from dataclasses import dataclass, field

import pytest

from smtp_relay.core.config import get_settings
from smtp_relay.services.ingest.types import NormalizedMessage


@dataclass
class RecordingDeliverer:
    messages: list[NormalizedMessage] = field(default_factory=list)
    error: Exception | None = None

    def deliver(self, message: NormalizedMessage) -> None:
        if self.error is not None:
            raise self.error
        self.messages.append(message)


@pytest.fixture()
def deliverer() -> RecordingDeliverer:
    return RecordingDeliverer()


@pytest.fixture()
def relay_env(monkeypatch) -> None:
    monkeypatch.setenv("ORCHESTRATOR_URL", "https://orchestrator.test/service/pcs")
    monkeypatch.setenv("USER_JWT", "test-jwt")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def smtp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture()
def deeply_nested_message() -> bytes:
    """multipart/mixed nested deeper than the stdlib parser can recurse."""
    levels = 1500
    head = "".join(
        f'Content-Type: multipart/mixed; boundary="b{i}"\r\n\r\n--b{i}\r\n' for i in range(levels)
    )
    leaf = "Content-Type: text/plain\r\n\r\nleaf\r\n"
    tail = "".join(f"--b{i}--\r\n" for i in reversed(range(levels)))
    return (head + leaf + tail).encode("ascii")
