from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

from smtp_relay.models.enums import TransactionOutcome

_SESSIONS_TOTAL = Counter(
    "smtp_relay_sessions_total",
    "Total SMTP sessions opened by clients.",
)
_TRANSACTIONS_TOTAL = Counter(
    "smtp_relay_transactions_total",
    "Total SMTP DATA transactions by outcome.",
    labelnames=("outcome",),
)
_DELIVERY_DURATION_SECONDS = Histogram(
    "smtp_relay_delivery_duration_seconds",
    "Outbound delivery call duration in seconds.",
)


def observe_session_opened() -> None:
    _SESSIONS_TOTAL.inc()


def observe_transaction(*, outcome: TransactionOutcome) -> None:
    _TRANSACTIONS_TOTAL.labels(outcome=outcome.value).inc()


def observe_delivery(*, duration_ms: int) -> None:
    _DELIVERY_DURATION_SECONDS.observe(max(0.0, duration_ms / 1000.0))


def start_metrics_server(*, port: int) -> None:
    start_http_server(port)
