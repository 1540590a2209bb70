"""Guest notification delivery.

Two notifiers are available:
- ConsoleNotifier: logs the message instead of sending it (local runs)
- HttpSmsNotifier: posts the message to an HTTP SMS gateway
"""

import re
import uuid
from typing import Optional

import httpx
import structlog

from guest_attestation.config import Settings
from guest_attestation.domain.errors import NotificationFailure
from guest_attestation.domain.interfaces import INotifier, NotificationResult

logger = structlog.get_logger(__name__)

TOKEN_PREFIX_LENGTH = 12
_GUEST_LINK = re.compile(r"(/guest/[^\s/?#]{0,%d})[^\s]*" % TOKEN_PREFIX_LENGTH)


def _mask(phone: str) -> str:
    return f"***{phone[-4:]}" if phone else "***"


def redact_guest_links(message: str) -> str:
    """Cut guest link tokens in a message down to a short prefix."""
    return _GUEST_LINK.sub(r"\1...", message)


class ConsoleNotifier(INotifier):
    """Writes outgoing messages to the log instead of an SMS provider."""

    def notify(self, phone_e164: str, message: str) -> NotificationResult:
        provider_ref = f"console-{uuid.uuid4()}"
        logger.info(
            "sms_console_delivery",
            to=_mask(phone_e164),
            message=redact_guest_links(message),
            provider_ref=provider_ref,
        )
        return NotificationResult(dispatched=True, provider_ref=provider_ref)


class HttpSmsNotifier(INotifier):
    """
    Client for an HTTP SMS gateway.

    Sends {"to", "from", "body"} as JSON with a bearer API key and reads
    the provider's message id from the "id" (or "sid") field of the reply.
    """

    def __init__(
        self,
        gateway_url: str,
        api_key: str,
        sender: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the SMS gateway client.

        Args:
            gateway_url: Full URL of the gateway's send endpoint
            api_key: Gateway API key sent as a bearer token
            sender: Sender name or number shown to the guest
            timeout_seconds: Request timeout in seconds (default: 5.0)
            transport: Optional httpx transport (used by tests)
        """
        if not gateway_url:
            raise ValueError("gateway_url is required for the HTTP SMS notifier")

        self.gateway_url = gateway_url
        self.sender = sender
        self.http_client = httpx.Client(
            timeout=timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client connection pool."""
        self.http_client.close()

    def notify(self, phone_e164: str, message: str) -> NotificationResult:
        """
        Send one SMS through the gateway.

        Raises:
            NotificationFailure: On timeouts, network errors or non-2xx replies
        """
        correlation_id = str(uuid.uuid4())

        try:
            response = self.http_client.post(
                self.gateway_url,
                json={"to": phone_e164, "from": self.sender, "body": message},
                headers={"X-Request-ID": correlation_id},
            )

            if response.status_code >= 400:
                logger.error(
                    "sms_gateway_rejected",
                    status_code=response.status_code,
                    to=_mask(phone_e164),
                    correlation_id=correlation_id,
                )
                raise NotificationFailure(
                    f"SMS gateway rejected message (status: {response.status_code})"
                )

            provider_ref = None
            try:
                body = response.json()
                if isinstance(body, dict):
                    provider_ref = body.get("id") or body.get("sid")
            except ValueError:
                logger.warning("sms_gateway_unparseable_reply", correlation_id=correlation_id)

            logger.info(
                "sms_sent",
                to=_mask(phone_e164),
                provider_ref=provider_ref,
                correlation_id=correlation_id,
            )
            return NotificationResult(dispatched=True, provider_ref=provider_ref)

        except httpx.TimeoutException as e:
            logger.error("sms_gateway_timeout", correlation_id=correlation_id, error=str(e))
            raise NotificationFailure("SMS gateway timeout") from e

        except httpx.RequestError as e:
            # Network errors, connection errors, etc.
            logger.error("sms_gateway_request_error", correlation_id=correlation_id, error=str(e))
            raise NotificationFailure(f"SMS gateway request error: {e}") from e


def build_notifier(settings: Settings) -> INotifier:
    """Select the notifier named by settings.sms_provider."""
    provider = settings.sms_provider.lower()
    if provider == "console":
        return ConsoleNotifier()
    if provider == "http":
        return HttpSmsNotifier(
            gateway_url=settings.sms_gateway_url,
            api_key=settings.sms_gateway_api_key,
            sender=settings.sms_sender,
            timeout_seconds=settings.sms_timeout_seconds,
        )
    raise ValueError(f"Unknown SMS provider: {settings.sms_provider}")
