"""
Transactional e-mail through EmailJS, plus an in-memory double for tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import requests

from lovestory.config import Settings

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds


class EmailConfigurationError(ValueError):
    """Required EmailJS credentials are missing."""


class EmailSendError(Exception):
    """The provider rejected a send or could not be reached."""


@dataclass(frozen=True)
class EmailJsConfig:
    service_id: str
    template_id: str
    today_template_id: str
    public_key: str
    private_key: str
    api_url: str = "https://api.emailjs.com/api/v1.0/email/send"

    def __post_init__(self):
        missing = [
            name
            for name in (
                "service_id",
                "template_id",
                "today_template_id",
                "public_key",
                "private_key",
            )
            if not (getattr(self, name) or "").strip()
        ]
        if missing:
            raise EmailConfigurationError(
                "Missing required EmailJS settings: "
                + ", ".join(f"emailjs_{name}" for name in missing)
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailJsConfig":
        return cls(
            service_id=settings.emailjs_service_id,
            template_id=settings.emailjs_template_id,
            today_template_id=settings.emailjs_today_template_id,
            public_key=settings.emailjs_public_key,
            private_key=settings.emailjs_private_key,
            api_url=settings.emailjs_api_url,
        )

    def template_for(self, is_today: bool) -> str:
        return self.today_template_id if is_today else self.template_id


class EmailProvider(Protocol):
    """Sends one templated e-mail; raises on failure."""

    def send(self, template_id: str, template_params: dict) -> None:
        ...


class EmailJsClient:
    """
    EmailJS REST client authenticated with the account's private key.
    """

    def __init__(self, config: EmailJsConfig, session: requests.Session | None = None):
        self.config = config
        self._session = session or requests.Session()

    def send(self, template_id: str, template_params: dict) -> None:
        payload = {
            "service_id": self.config.service_id,
            "template_id": template_id,
            "user_id": self.config.public_key,
            "accessToken": self.config.private_key,
            "template_params": template_params,
        }
        try:
            response = self._session.post(
                self.config.api_url, json=payload, timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as exc:
            raise EmailSendError(str(exc)) from exc
        if not response.ok:
            raise EmailSendError(
                f"EmailJS returned {response.status_code}: {response.text.strip()}"
            )
        logger.debug(
            "EmailJS accepted template %s for %s",
            template_id,
            template_params.get("email"),
        )


@dataclass
class InMemoryEmailProvider:
    """Test double that records sends; addresses in fail_for raise EmailSendError."""

    fail_for: set[str] = field(default_factory=set)
    sent: list[tuple[str, dict]] = field(default_factory=list)

    def send(self, template_id: str, template_params: dict) -> None:
        email = template_params.get("email")
        if email in self.fail_for:
            raise EmailSendError(f"Rejected recipient {email}")
        self.sent.append((template_id, dict(template_params)))
