from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any

from aiosmtpd.smtp import SMTP, AuthResult, Envelope, LoginPassword
from aiosmtpd.smtp import Session as SMTPSession

from smtp_relay.core.log import log_event
from smtp_relay.core.metrics import observe_session_opened, observe_transaction
from smtp_relay.models.enums import TransactionOutcome
from smtp_relay.services.delivery import Deliverer
from smtp_relay.smtp.errors import SmtpReplyError
from smtp_relay.smtp.session import RelaySession, SessionLimits

logger = logging.getLogger("smtp_relay")

SHUTTING_DOWN_REPLY = "421 4.3.2 Service shutting down"
LOCAL_ERROR_REPLY = "451 4.3.0 Local error in processing"


def _format_peer(peer: Any) -> str | None:
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    if peer is None:
        return None
    return str(peer)


class RelayHandler:
    """aiosmtpd handler that drives one RelaySession per connection.

    The RelaySession lives on aiosmtpd's per-connection Session object, so it
    is only ever touched by the task serving that connection, or by the DATA
    worker thread while that task awaits it.
    """

    def __init__(self, *, deliverer: Deliverer, limits: SessionLimits, data_workers: int = 64) -> None:
        self._deliverer = deliverer
        self._limits = limits
        self._executor = ThreadPoolExecutor(
            max_workers=data_workers,
            thread_name_prefix="smtp-relay-data",
        )
        self._in_flight = 0
        self._draining = False

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def begin_drain(self) -> None:
        self._draining = True

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def relay_session(self, session: SMTPSession) -> RelaySession:
        relay = getattr(session, "relay", None)
        if relay is None:
            relay = RelaySession(
                deliverer=self._deliverer,
                limits=self._limits,
                peer=_format_peer(getattr(session, "peer", None)),
            )
            session.relay = relay
            observe_session_opened()
            log_event("smtp.session.opened", session_id=relay.session_id, peer=relay.peer)
        return relay

    def authenticate(
        self,
        server: SMTP,
        session: SMTPSession,
        envelope: Envelope,
        mechanism: str,
        auth_data: Any,
    ) -> AuthResult:
        # Any identity is accepted; network isolation is the security boundary.
        if not isinstance(auth_data, LoginPassword):
            return AuthResult(success=False, handled=False)

        relay = self.relay_session(session)
        login = auth_data.login
        username = login.decode("utf-8", errors="replace") if isinstance(login, bytes) else str(login)
        try:
            relay.auth(username)
        except SmtpReplyError as e:
            return AuthResult(success=False, handled=False, message=e.reply)
        return AuthResult(success=True)

    async def handle_MAIL(
        self,
        server: SMTP,
        session: SMTPSession,
        envelope: Envelope,
        address: str,
        mail_options: list[str],
    ) -> str:
        if self._draining:
            return SHUTTING_DOWN_REPLY

        relay = self.relay_session(session)
        if relay.in_transaction:
            # aiosmtpd already discarded the previous envelope (for example a
            # DATA it rejected as too large before reaching us).
            relay.reset()
        try:
            relay.mail(address)
        except SmtpReplyError as e:
            return e.reply

        envelope.mail_from = address
        envelope.mail_options.extend(mail_options)
        return "250 OK"

    async def handle_RCPT(
        self,
        server: SMTP,
        session: SMTPSession,
        envelope: Envelope,
        address: str,
        rcpt_options: list[str],
    ) -> str:
        relay = self.relay_session(session)
        try:
            relay.rcpt(address)
        except SmtpReplyError as e:
            return e.reply

        envelope.rcpt_tos.append(address)
        envelope.rcpt_options.extend(rcpt_options)
        return "250 OK"

    async def handle_DATA(self, server: SMTP, session: SMTPSession, envelope: Envelope) -> str:
        relay = self.relay_session(session)
        content = envelope.content
        if content is None:
            raw = b""
        elif isinstance(content, bytes):
            raw = content
        else:
            raw = content.encode("utf-8", errors="surrogateescape")

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, relay.data, raw)
        self._in_flight += 1
        session.data_running = True
        future.add_done_callback(partial(self._data_finished, session))
        try:
            # Shielded: a dropped connection cancels this task, but the worker
            # thread keeps going and still counts as in flight until it returns.
            return await asyncio.shield(future)
        except SmtpReplyError as e:
            return e.reply
        except Exception:
            observe_transaction(outcome=TransactionOutcome.rejected_error)
            logger.exception("Unexpected error while processing DATA (session %s)", relay.session_id)
            return LOCAL_ERROR_REPLY

    def _data_finished(self, session: SMTPSession, future: asyncio.Future) -> None:
        self._in_flight -= 1
        session.data_running = False
        if not future.cancelled():
            # Retrieved here too, for when nobody is left awaiting the result.
            future.exception()
        if getattr(session, "close_pending", False):
            self.relay_session(session).close()

    async def handle_RSET(self, server: SMTP, session: SMTPSession, envelope: Envelope) -> str:
        self.relay_session(session).reset()
        return "250 OK"

    async def handle_QUIT(self, server: SMTP, session: SMTPSession, envelope: Envelope) -> str:
        self.relay_session(session).close()
        return "221 Bye"

    def handle_connection_lost(self, session: SMTPSession) -> None:
        relay = getattr(session, "relay", None)
        if relay is None:
            return
        if getattr(session, "data_running", False):
            session.close_pending = True
            return
        relay.close()

    def handle_oversized(self, session: SMTPSession) -> None:
        self.relay_session(session).reject_oversized()
