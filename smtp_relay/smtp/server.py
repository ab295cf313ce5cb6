from __future__ import annotations

import logging
import signal
import socket
import threading
import time
from dataclasses import dataclass

from aiosmtpd.controller import Controller
from aiosmtpd.smtp import SMTP

from smtp_relay.core.config import Settings
from smtp_relay.core.http import build_http_client
from smtp_relay.core.log import log_event
from smtp_relay.core.metrics import start_metrics_server
from smtp_relay.services.delivery import Deliverer, OrchestratorClient
from smtp_relay.smtp.handler import RelayHandler
from smtp_relay.smtp.session import SessionLimits

_DRAIN_POLL_SECONDS = 0.05
# aiosmtpd's own size refusals (MAIL SIZE= and DATA); the relay's replies carry an enhanced code.
TRANSPORT_OVERSIZED_PREFIX = "552 Error:"


def check_port_available(*, host: str, port: int) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as e:
            raise RuntimeError(f"port {port} is already in use or cannot bind: {e}") from e


class RelaySMTP(SMTP):
    """aiosmtpd protocol that also reports disconnects and size refusals.

    aiosmtpd has no handler hooks for either, so both are surfaced here.
    """

    def __init__(self, handler: RelayHandler, **kwargs) -> None:
        super().__init__(handler, **kwargs)
        self.relay_handler = handler

    def connection_lost(self, error: Exception | None) -> None:
        session = self.session
        super().connection_lost(error)
        if session is not None:
            self.relay_handler.handle_connection_lost(session)

    async def push(self, status) -> None:
        if isinstance(status, str) and status.startswith(TRANSPORT_OVERSIZED_PREFIX) and self.session is not None:
            self.relay_handler.handle_oversized(self.session)
        await super().push(status)


class RelayController(Controller):
    def factory(self) -> RelaySMTP:
        return RelaySMTP(self.handler, **self.SMTP_kwargs)


@dataclass
class RelayServer:
    controller: Controller
    handler: RelayHandler
    grace_seconds: float

    def start(self) -> None:
        self.controller.start()
        log_event(
            "server.started",
            host=self.controller.hostname,
            port=self.controller.port,
        )

    def stop(self) -> None:
        log_event("server.stopping", in_flight=self.handler.in_flight)
        self.handler.begin_drain()

        # Stop accepting connections; sessions already open keep running.
        listener = self.controller.server
        if listener is not None:
            self.controller.loop.call_soon_threadsafe(listener.close)

        deadline = time.monotonic() + max(0.0, self.grace_seconds)
        while self.handler.in_flight > 0 and time.monotonic() < deadline:
            time.sleep(_DRAIN_POLL_SECONDS)

        if self.handler.in_flight > 0:
            log_event(
                "server.drain_timeout",
                level=logging.WARNING,
                in_flight=self.handler.in_flight,
                grace_seconds=self.grace_seconds,
            )
        self.controller.stop()
        self.handler.shutdown()
        log_event("server.stopped")


def build_server(*, settings: Settings, deliverer: Deliverer) -> RelayServer:
    handler = RelayHandler(
        deliverer=deliverer,
        limits=SessionLimits(
            max_message_bytes=settings.MAX_MESSAGE_BYTES,
            max_recipients=settings.MAX_RECIPIENTS,
        ),
        data_workers=settings.DATA_WORKERS,
    )
    controller = RelayController(
        handler,
        hostname=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        server_hostname=settings.SMTP_DOMAIN,
        authenticator=handler.authenticate,
        # OK within a private network; the listener never offers TLS.
        auth_require_tls=False,
        auth_exclude_mechanism=["LOGIN"],
        data_size_limit=settings.MAX_MESSAGE_BYTES,
        timeout=settings.SMTP_IDLE_TIMEOUT_SECONDS,
    )
    return RelayServer(
        controller=controller,
        handler=handler,
        grace_seconds=settings.SHUTDOWN_GRACE_SECONDS,
    )


def run_server_forever(*, settings: Settings) -> None:
    stop_requested = threading.Event()

    def _request_stop(signum: int, _frame: object) -> None:
        log_event("server.signal", signal=signal.Signals(signum).name)
        stop_requested.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    check_port_available(host=settings.SMTP_HOST, port=settings.SMTP_PORT)
    if settings.ENABLE_PROMETHEUS_METRICS:
        start_metrics_server(port=settings.METRICS_PORT)
        log_event("metrics.started", port=settings.METRICS_PORT)

    with build_http_client(settings=settings) as http_client:
        deliverer = OrchestratorClient(
            http_client,
            base_url=settings.ORCHESTRATOR_URL,
            token=settings.USER_JWT,
            deadline_seconds=settings.DELIVERY_TIMEOUT_SECONDS,
        )
        server = build_server(settings=settings, deliverer=deliverer)
        server.start()
        log_event(
            "server.ready",
            orchestrator_url=settings.ORCHESTRATOR_URL,
            max_message_bytes=settings.MAX_MESSAGE_BYTES,
        )
        try:
            stop_requested.wait()
        finally:
            server.stop()
