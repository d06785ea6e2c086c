"""Invitation delivery through the Resend transactional email API."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from jinja2 import Environment, PackageLoader, select_autoescape

from .config import Settings
from .errors import DeliveryError

logger = logging.getLogger("uvicorn.error")

DOMAIN_HELP_URL = "https://resend.com/domains"

_templates = Environment(
    loader=PackageLoader("guestpass", "templates"),
    autoescape=select_autoescape(["html"]),
)


@dataclass(frozen=True)
class InvitationMessage:
    to: str
    event_title: str
    event_location: str
    event_date: str
    invitation_url: str
    organizer_name: str
    participant_name: str | None = None
    event_description: str | None = None

    @property
    def subject(self) -> str:
        return f"Invitation: {self.event_title}"


def render_invitation_html(message: InvitationMessage) -> str:
    template = _templates.get_template("email/invitation.html")
    return template.render(message=message)


def classify_provider_error(raw: str) -> str:
    """Turn a provider error into the message shown to the organizer."""
    if "domain is not verified" in raw:
        return (
            "Email domain not verified. Please verify your domain in Resend "
            "or use onboarding@resend.dev for testing."
        )
    if "API key" in raw:
        return (
            "Invalid Resend API key. Please check your GUESTPASS_RESEND_API_KEY "
            "setting."
        )
    return f"Failed to send email: {raw}"


def _provider_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"


class ResendMailer:
    """Thin synchronous client for ``POST /emails``."""

    def __init__(
        self,
        *,
        api_key: str,
        from_address: str,
        api_url: str = "https://api.resend.com",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.from_address = from_address
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def send_invitation(self, message: InvitationMessage) -> str:
        """Deliver one invitation and return the provider message id."""
        payload = {
            "from": self.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": render_invitation_html(message),
        }
        try:
            response = self._client.post("/emails", json=payload)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Failed to send email: {exc}") from exc

        if response.is_error:
            raw = _provider_message(response)
            logger.warning("Resend rejected email to %s: %s", message.to, raw)
            raise DeliveryError(classify_provider_error(raw))

        try:
            return str(response.json().get("id", ""))
        except ValueError:
            return ""

    def close(self) -> None:
        self._client.close()


def mailer_from_settings(settings: Settings) -> ResendMailer | None:
    """Return a mailer, or ``None`` when no delivery credential is configured."""
    if not settings.email_enabled:
        return None
    return ResendMailer(
        api_key=settings.resend_api_key.strip(),
        from_address=settings.from_address,
        api_url=settings.resend_api_url,
        timeout=settings.email_timeout_seconds,
    )
