from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from smtp_relay.core.log import log_event, new_session_id
from smtp_relay.core.metrics import observe_delivery, observe_transaction
from smtp_relay.models.enums import SessionState, TransactionOutcome
from smtp_relay.services.delivery import Deliverer, DeliveryError
from smtp_relay.services.ingest.labels import app_name_from_sender, sanitize_app_name
from smtp_relay.services.ingest.parser import parse_raw_email
from smtp_relay.services.ingest.types import NormalizedMessage
from smtp_relay.smtp.errors import SmtpReplyError, bad_sequence

ACCEPTED_REPLY = "250 2.0.0 Message accepted for delivery"


@dataclass(frozen=True)
class SessionLimits:
    max_message_bytes: int = 10 * 1024 * 1024
    max_recipients: int = 50


@dataclass
class RelaySession:
    """Per-connection SMTP state.

    Owned by the single task serving the connection; never shared.
    """

    deliverer: Deliverer
    limits: SessionLimits = field(default_factory=SessionLimits)
    peer: str | None = None
    session_id: str = field(default_factory=new_session_id)
    auth_label: str | None = None
    mail_from: str | None = None
    recipients: list[str] = field(default_factory=list)
    state: SessionState = SessionState.new
    # delivered or rejected, for the most recent DATA on this connection
    last_result: SessionState | None = None

    @property
    def in_transaction(self) -> bool:
        return self.mail_from is not None

    def auth(self, username: str) -> str:
        self._ensure_open()
        if self.auth_label is not None:
            raise bad_sequence("Already authenticated")
        if self.in_transaction:
            raise bad_sequence("AUTH not permitted during a mail transaction")

        self.auth_label = sanitize_app_name(username)
        self.state = SessionState.authenticated
        log_event(
            "smtp.auth.accepted",
            session_id=self.session_id,
            username=username,
            app_name=self.auth_label,
        )
        return self.auth_label

    def mail(self, address: str) -> None:
        self._ensure_open()
        if self.in_transaction:
            raise bad_sequence("Error: nested MAIL command")
        self.mail_from = address
        self.state = SessionState.sender_set

    def rcpt(self, address: str) -> None:
        self._ensure_open()
        if not self.in_transaction:
            raise bad_sequence("Error: need MAIL command")
        if len(self.recipients) >= self.limits.max_recipients:
            raise SmtpReplyError(code=452, enhanced="4.5.3", message="Error: too many recipients")
        self.recipients.append(address)
        self.state = SessionState.recipients_set

    def data(self, raw: bytes) -> str:
        self._ensure_open()
        if not self.recipients:
            raise bad_sequence("Error: need RCPT command")

        result = SessionState.rejected
        try:
            message = self._normalize(raw)
            self._deliver(message)
            result = SessionState.delivered
        finally:
            self.last_result = result
            self.reset()

        observe_transaction(outcome=TransactionOutcome.delivered)
        return ACCEPTED_REPLY

    def reset(self) -> None:
        self.mail_from = None
        self.recipients = []
        if self.state != SessionState.closed:
            self.state = (
                SessionState.authenticated if self.auth_label is not None else SessionState.new
            )

    def close(self) -> None:
        if self.state == SessionState.closed:
            return
        self.reset()
        self.auth_label = None
        self.state = SessionState.closed
        log_event("smtp.session.closed", session_id=self.session_id)

    def resolve_app_name(self) -> str:
        if self.auth_label:
            return self.auth_label
        return app_name_from_sender(self.mail_from)

    def _ensure_open(self) -> None:
        if self.state == SessionState.closed:
            raise bad_sequence("Error: session closed")

    def reject_oversized(self, *, size: int | None = None) -> SmtpReplyError:
        """Record a body refused for size and drop the transaction.

        Called from `data()` and by the transport when it refuses the body
        itself before DATA completes.
        """
        observe_transaction(outcome=TransactionOutcome.rejected_size)
        log_event(
            "smtp.data.rejected",
            level=logging.WARNING,
            session_id=self.session_id,
            reason="message_too_large",
            size=size,
            limit=self.limits.max_message_bytes,
        )
        self.last_result = SessionState.rejected
        self.reset()
        return SmtpReplyError(
            code=552,
            enhanced="5.3.4",
            message="Error: message exceeds fixed maximum message size",
        )

    def _normalize(self, raw: bytes) -> NormalizedMessage:
        if len(raw) > self.limits.max_message_bytes:
            raise self.reject_oversized(size=len(raw))

        self.state = SessionState.body_received
        parsed = parse_raw_email(raw)
        # Only the first recipient is relayed; the orchestrator API takes one address.
        return NormalizedMessage(
            subject=parsed.subject,
            text=parsed.text,
            html=parsed.html,
            app_name=self.resolve_app_name(),
            recipient=self.recipients[0],
        )

    def _deliver(self, message: NormalizedMessage) -> None:
        log_event(
            "smtp.data.received",
            session_id=self.session_id,
            app_name=message.app_name,
            recipient=message.recipient,
            recipients=len(self.recipients),
        )

        start_ts = time.monotonic()
        try:
            self.deliverer.deliver(message)
        except DeliveryError as e:
            observe_transaction(outcome=TransactionOutcome.rejected_delivery)
            reply_error = e.smtp_reply_error()
            log_event(
                "delivery.failed",
                level=logging.WARNING,
                session_id=self.session_id,
                app_name=message.app_name,
                recipient=message.recipient,
                error_type=type(e).__name__,
                error=str(e),
                smtp_code=reply_error.code,
            )
            raise reply_error from e
        finally:
            observe_delivery(duration_ms=int((time.monotonic() - start_ts) * 1000))

        log_event(
            "delivery.succeeded",
            session_id=self.session_id,
            app_name=message.app_name,
            recipient=message.recipient,
        )
