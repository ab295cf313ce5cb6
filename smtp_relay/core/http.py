from __future__ import annotations

import httpx

from smtp_relay.core.config import Settings


def build_http_client(*, settings: Settings) -> httpx.Client:
    # Centralize HTTP client configuration (timeouts, etc) so we can override in tests.
    return httpx.Client(timeout=settings.DELIVERY_TIMEOUT_SECONDS)
