"""Transactional email delivery through the Resend REST API.

Sends are retried with exponential backoff; address-validation errors are
terminal and fail on the first attempt.
"""

import asyncio
import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Protocol

import httpx
from opentelemetry.trace import Status, StatusCode

from draftdesk.core.tracing import get_tracer, safe_span_attributes

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


@dataclass
class OutboundMessage:
    to: str
    from_address: str
    subject: str
    body: str
    draft_id: int | None = None


@dataclass
class SendResult:
    success: bool
    sent_at: datetime
    message_id: str | None = None
    error: str | None = None


class EmailSender(Protocol):
    async def send(self, message: OutboundMessage) -> SendResult:
        ...


class InvalidRecipientError(Exception):
    """Raised when the provider rejects the recipient address."""


class EmailProviderError(Exception):
    """Raised for any other provider or transport failure (retryable)."""


def is_invalid_address_error(message: str) -> bool:
    lowered = message.lower()
    return "invalid email" in lowered or "invalid `to`" in lowered or "invalid to" in lowered


def format_email_body(body: str) -> str:
    """Wrap a plain-text body in a minimal HTML document, one line per ``<br>``."""
    html_body = "<br>".join(html.escape(line.strip()) for line in body.split("\n"))

    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <style>
      body {{
        font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif;
        line-height: 1.6;
        color: #333;
        max-width: 600px;
        margin: 0 auto;
        padding: 20px;
      }}
    </style>
  </head>
  <body>
    {html_body}
  </body>
</html>
"""


class ResendEmailSender:
    """Delivers messages via ``POST {api_url}/emails``."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.resend.com",
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timeout: float = 15.0,
    ):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.sleep = sleep
        self.timeout = timeout

    async def _post(self, message: OutboundMessage) -> str | None:
        """Single delivery attempt. Returns the provider message id."""
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.api_url}/emails",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": message.from_address,
                        "to": [message.to],
                        "subject": message.subject,
                        "html": format_email_body(message.body),
                    },
                    timeout=self.timeout,
                )
        except httpx.TimeoutException as e:
            raise EmailProviderError("Email provider timeout") from e
        except httpx.RequestError as e:
            raise EmailProviderError(f"Unable to reach email provider: {e}") from e

        if response.status_code >= 400:
            try:
                error_data = response.json() if response.content else {}
            except ValueError:
                error_data = {}
            if not isinstance(error_data, dict):
                error_data = {}
            error_message = error_data.get("message") or f"HTTP {response.status_code}"
            if is_invalid_address_error(error_message):
                raise InvalidRecipientError(error_message)
            raise EmailProviderError(error_message)

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}
        return data.get("id") if isinstance(data, dict) else None

    async def send(self, message: OutboundMessage) -> SendResult:
        with tracer.start_as_current_span("email.send") as span:
            span.set_attributes(safe_span_attributes(
                draft_id=message.draft_id,
                recipient=message.to,
                sender=message.from_address,
                body=message.body,
            ))

            last_error: str | None = None
            for attempt in range(1, self.max_attempts + 1):
                try:
                    message_id = await self._post(message)
                except InvalidRecipientError:
                    logger.warning(
                        "Email provider rejected recipient address",
                        extra={"draft_id": message.draft_id}
                    )
                    span.set_status(Status(StatusCode.ERROR, "Invalid email address"))
                    return SendResult(
                        success=False,
                        error="Invalid email address",
                        sent_at=datetime.now(timezone.utc),
                    )
                except EmailProviderError as e:
                    last_error = str(e)
                    logger.warning(
                        "Email send attempt failed",
                        extra={"draft_id": message.draft_id, "attempt": attempt, "error": last_error}
                    )
                    if attempt < self.max_attempts:
                        await self.sleep(self.backoff_base_seconds * 2 ** (attempt - 1))
                    continue

                logger.info(
                    "Email sent",
                    extra={"draft_id": message.draft_id, "attempt": attempt, "message_id": message_id}
                )
                span.set_attribute("attempts", attempt)
                span.set_status(Status(StatusCode.OK))
                return SendResult(
                    success=True,
                    message_id=message_id,
                    sent_at=datetime.now(timezone.utc),
                )

            span.set_status(Status(StatusCode.ERROR, "Retries exhausted"))
            return SendResult(
                success=False,
                error=last_error or "Failed to send email after multiple attempts",
                sent_at=datetime.now(timezone.utc),
            )
