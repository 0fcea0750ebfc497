"""Outbound email through the Resend HTTP API."""

import html
import logging
from typing import Protocol

import httpx

from backend.app.config import Settings
from backend.app.errors import PreconditionFailedError, TransientFailureError

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    """Protocol for email delivery."""

    async def send(self, to: str, subject: str, html_body: str) -> None:
        """Deliver one message. Raises on failure."""
        ...


class ResendEmailSender:
    """Resend REST client (POST /emails)."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        from_name: str,
        base_url: str = "https://api.resend.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._sender = f"{from_name} <{from_address}>"
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def send(self, to: str, subject: str, html_body: str) -> None:
        """Send an email.

        Raises:
            TransientFailureError: Network error, 429 or 5xx (retryable)
            PreconditionFailedError: Provider rejected the message (4xx)
        """
        payload = {"from": self._sender, "to": [to], "subject": subject, "html": html_body}
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post("/emails", json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise TransientFailureError(f"Email request failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientFailureError(f"Email provider returned {response.status_code}")
        if response.status_code >= 400:
            raise PreconditionFailedError(
                f"Email provider rejected message ({response.status_code}): {response.text}"
            )

        logger.info(
            "Email sent",
            extra={"structured": {"to": to, "subject": subject, "id": response.json().get("id")}},
        )


class LoggingEmailSender:
    """Fallback sender when no provider key is configured: logs instead of sending."""

    async def send(self, to: str, subject: str, html_body: str) -> None:
        logger.info(
            f"Email delivery disabled, dropping message: {subject}",
            extra={"structured": {"to": to, "subject": subject}},
        )


def get_email_sender(settings: Settings) -> EmailSender:
    """Factory: Resend when an API key is configured, logging sender otherwise."""
    api_key = settings.resend_api_key
    if api_key and api_key.get_secret_value():
        return ResendEmailSender(
            api_key=api_key.get_secret_value(),
            from_address=settings.email_from,
            from_name=settings.email_from_name,
            base_url=settings.resend_base_url,
        )
    logger.warning("No Resend API key configured, email delivery disabled")
    return LoggingEmailSender()


def render_email(heading: str, paragraphs: list[str], link_text: str, link_url: str) -> str:
    """Minimal branded HTML email. All text is escaped."""
    body = "".join(f"<p>{html.escape(p)}</p>" for p in paragraphs)
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"></head>"
        "<body style=\"font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;\">"
        f"<h1 style=\"color: #7c3aed;\">{html.escape(heading)}</h1>"
        f"{body}"
        f"<a href=\"{html.escape(link_url, quote=True)}\">{html.escape(link_text)}</a>"
        "</body></html>"
    )
