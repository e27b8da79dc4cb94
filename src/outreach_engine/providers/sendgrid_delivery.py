"""SendGrid email delivery provider.

Wraps the SendGrid v3 client behind the EmailDeliveryProvider contract:
send(to, subject, body) returns a DeliveryResult on acceptance and raises
DeliveryError otherwise, so the outreach pipeline can leave the lead
eligible for a later tick.
"""

import asyncio
import html
import logging
import re
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Content, Email, Mail, To

from ..exceptions import DeliveryError, InvalidRecipientError
from .base import DeliveryResult

logger = logging.getLogger(__name__)

# Constants
EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
ACCEPTED_STATUS_CODES = (200, 201, 202)
PROVIDER_NAME = "sendgrid"


def validate_email(email: Optional[str]) -> bool:
    """Validate email address format.

    Args:
        email: Email address to validate.

    Returns:
        True if email format is valid, False otherwise.
    """
    if not email or not isinstance(email, str):
        return False
    return bool(EMAIL_REGEX.match(email.strip()))


def text_to_html(body: str) -> str:
    """Render a plain-text body as minimal HTML paragraphs."""
    paragraphs = [p.strip() for p in body.split("\n\n") if p.strip()]
    return "".join(
        f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in paragraphs
    )


class SendGridDeliveryProvider:
    """Email delivery backed by SendGridAPIClient.

    Example:
        >>> provider = SendGridDeliveryProvider(api_key="SG...", from_email="hi@example.com")
        >>> result = await provider.send("owner@clinic.com", "Your demo", "Hi ...")
        >>> result.message_id
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        client: Optional[SendGridAPIClient] = None,
    ) -> None:
        """Initialize SendGrid delivery.

        Args:
            api_key: SendGrid API key.
            from_email: Sender address for all outreach.
            from_name: Sender display name.
            client: Pre-built SendGrid client, mainly for tests.

        Raises:
            ValueError: If API key or sender address is missing.
        """
        if client is None:
            if not api_key:
                raise ValueError(
                    "SendGrid API key required. Set SENDGRID_API_KEY environment "
                    "variable or pass api_key parameter."
                )
            client = SendGridAPIClient(api_key=api_key)
        if not from_email:
            raise ValueError("From email required. Set SENDGRID_FROM_EMAIL.")

        self._client = client
        self.from_email = from_email
        self.from_name = from_name
        logger.info("SendGridDeliveryProvider initialized (from_email=%s)", from_email)

    def _build_mail(self, to: str, subject: str, body: str) -> Mail:
        mail = Mail(
            from_email=Email(self.from_email, self.from_name),
            to_emails=To(to),
            subject=subject,
        )
        mail.add_content(Content("text/plain", body))
        mail.add_content(Content("text/html", text_to_html(body)))
        return mail

    async def send(self, to: str, subject: str, body: str) -> DeliveryResult:
        """Send a single outreach email.

        Args:
            to: Recipient address.
            subject: Subject line.
            body: Plain-text body; an HTML alternative is derived from it.

        Returns:
            DeliveryResult with the SendGrid message id.

        Raises:
            DeliveryError: If the address is invalid, the API call fails, or
                SendGrid does not accept the message.
        """
        if not validate_email(to):
            raise InvalidRecipientError(f"Invalid email address: {to}", provider=PROVIDER_NAME)

        mail = self._build_mail(to, subject, body)
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, lambda: self._client.send(mail))
        except Exception as e:
            error_msg = str(e)
            logger.error("Failed to send email to %s: %s", to, error_msg)
            status_code = getattr(e, "status_code", None)
            raise DeliveryError(
                f"SendGrid send failed: {error_msg}",
                provider=PROVIDER_NAME,
                retryable=status_code != 401,
                status_code=status_code,
            ) from e

        status_code = response.status_code
        if status_code not in ACCEPTED_STATUS_CODES:
            raise DeliveryError(
                f"SendGrid returned status code {status_code}",
                provider=PROVIDER_NAME,
                status_code=status_code,
            )

        message_id = None
        if getattr(response, "headers", None):
            message_id = response.headers.get("X-Message-Id")

        logger.info("Email sent: to=%s, message_id=%s", to, message_id)
        return DeliveryResult(success=True, message_id=message_id, status_code=status_code)
