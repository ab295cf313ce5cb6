from __future__ import annotations

import time
from typing import Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_core import PydanticSerializationError

from smtp_relay.services.ingest.types import NormalizedMessage
from smtp_relay.smtp.errors import SmtpReplyError

SEND_EMAIL_PATH = "/email/send"
_ERROR_BODY_LIMIT = 500


class DeliveryError(RuntimeError):
    def smtp_reply_error(self) -> SmtpReplyError:
        return SmtpReplyError(code=451, enhanced="4.3.0", message="Delivery failed, try again later")


class DeliveryNetworkError(DeliveryError):
    def smtp_reply_error(self) -> SmtpReplyError:
        return SmtpReplyError(code=451, enhanced="4.4.1", message="Upstream unreachable, try again later")


class DeliveryTimeoutError(DeliveryNetworkError):
    pass


class DeliveryStatusError(DeliveryError):
    def __init__(self, *, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code

    def smtp_reply_error(self) -> SmtpReplyError:
        if self.status_code >= 500 or self.status_code == 429:
            return SmtpReplyError(
                code=451,
                enhanced="4.3.0",
                message=f"Upstream returned {self.status_code}, try again later",
            )
        return SmtpReplyError(
            code=554,
            enhanced="5.3.0",
            message=f"Upstream rejected message ({self.status_code})",
        )


class DeliverySerializationError(DeliveryError):
    def smtp_reply_error(self) -> SmtpReplyError:
        return SmtpReplyError(code=554, enhanced="5.6.0", message="Message content could not be encoded")


class Deliverer(Protocol):
    def deliver(self, message: NormalizedMessage) -> None: ...


class SendEmailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: str
    subject: str
    text: str
    html: str | None = None
    app_name: str = Field(alias="appName")


def build_send_email_body(message: NormalizedMessage) -> bytes:
    try:
        req = SendEmailRequest(
            to=message.recipient,
            subject=message.subject,
            text=message.text,
            html=message.html or None,
            app_name=message.app_name,
        )
        return req.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
    except (ValidationError, PydanticSerializationError, UnicodeEncodeError) as e:
        raise DeliverySerializationError(f"failed to serialize email request: {e}") from e


class OrchestratorClient:
    """Relays normalized messages to the orchestrator email API.

    One POST per message; retries are left to the SMTP client, which sees a
    transient reply for network failures and 5xx responses.

    httpx timeouts bound each read or write separately, so `deadline_seconds`
    additionally caps the whole exchange while the response is read.
    """

    def __init__(
        self,
        client: httpx.Client,
        *,
        base_url: str,
        token: str,
        deadline_seconds: float | None = None,
    ) -> None:
        self._client = client
        self._url = f"{base_url.rstrip('/')}{SEND_EMAIL_PATH}"
        self._token = token
        self._deadline_seconds = deadline_seconds

    def deliver(self, message: NormalizedMessage) -> None:
        body = build_send_email_body(message)
        deadline = None
        if self._deadline_seconds is not None:
            deadline = time.monotonic() + self._deadline_seconds

        try:
            with self._client.stream(
                "POST",
                self._url,
                content=body,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self._token}",
                },
            ) as res:
                chunks: list[bytes] = []
                _check_deadline(deadline)
                for chunk in res.iter_bytes():
                    chunks.append(chunk)
                    _check_deadline(deadline)
        except httpx.TimeoutException as e:
            raise DeliveryTimeoutError(f"email API request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise DeliveryNetworkError(f"failed to send HTTP request: {e}") from e

        if not res.is_success:
            text = b"".join(chunks).decode("utf-8", errors="replace")
            raise DeliveryStatusError(
                status_code=res.status_code,
                message=f"API returned error status {res.status_code}: {text[:_ERROR_BODY_LIMIT]}",
            )


def _check_deadline(deadline: float | None) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise DeliveryTimeoutError("email API request exceeded the delivery deadline")
