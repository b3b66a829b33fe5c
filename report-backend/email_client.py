"""
Email delivery through the Resend HTTP API.

Attachments are sent base64-encoded; the report CSV is the only one we use.
"""

import base64
import logging
import re
from typing import Any, Dict, List, Optional

from config import Settings
from errors import ConfigurationError, EmailDeliveryError
from http_client import JSONHTTPClient, UpstreamHTTPError

logger = logging.getLogger(__name__)

# Shape check only: local@domain.tld
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(address: Any) -> bool:
    return isinstance(address, str) and bool(EMAIL_PATTERN.match(address))


def csv_attachment(filename: str, content: str) -> Dict[str, str]:
    return {
        "filename": filename,
        "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
    }


class EmailClient(JSONHTTPClient):
    def __init__(
        self,
        api_key: Optional[str],
        from_email: Optional[str],
        base_url: str,
        timeout_seconds: float = 30.0,
    ):
        super().__init__(base_url, timeout_seconds=timeout_seconds)
        self.api_key = api_key
        self.from_email = from_email

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailClient":
        return cls(
            api_key=settings.resend_api_key,
            from_email=settings.resend_from_email,
            base_url=settings.resend_base_url,
        )

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("Email service not configured")
        if not self.from_email:
            raise ConfigurationError("Sender email not configured")

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Optional[List[Dict[str, str]]] = None,
    ) -> Optional[str]:
        """
        Send one message and return the provider's email id.

        Raises:
            ConfigurationError: API key or sender missing
            EmailDeliveryError: provider rejected the message or was unreachable
        """
        self.ensure_configured()
        body: Dict[str, Any] = {
            "from": self.from_email,
            "to": to,
            "subject": subject,
            "html": html,
        }
        if attachments:
            body["attachments"] = attachments

        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            status, reason, payload = await self.request_json("POST", "/emails", headers=headers, json_body=body)
        except UpstreamHTTPError as e:
            raise EmailDeliveryError("Failed to send email", details=e.message) from e

        if status >= 400:
            detail = (payload or {}).get("message") if isinstance(payload, dict) else None
            logger.error(f"Email to {to} rejected: HTTP {status} {detail or reason}")
            raise EmailDeliveryError("Failed to send email", details=detail or f"HTTP {status}: {reason}")

        email_id = payload.get("id") if isinstance(payload, dict) else None
        logger.info(f"Email sent to {to} (id={email_id})")
        return email_id
