from typing import Awaitable, Callable, Optional

import httpx

from app.config import Settings, settings as default_settings
from app.errors import ConfigurationError, RetryableExternalError, classify_http_error
from app.logging_config import get_logger, mask_phone
from app.services.retry import retry_async

logger = get_logger("whatsapp_service")

SERVICE = "whatsapp"
SEND_BACKOFF_BASE_SECONDS = 0.5
SEND_BACKOFF_MAX_SECONDS = 4.0


def truncate_message(body: str, max_chars: int) -> str:
    return (body or "")[:max_chars]


class WhatsAppClient:
    """Outbound text messages through the 360dialog WhatsApp API."""

    def __init__(
        self,
        config: Settings = default_settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep_func: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.config = config
        self._transport = transport
        self._sleep_func = sleep_func

    @property
    def messages_url(self) -> str:
        return f"{self.config.whatsapp_api_base_url.rstrip('/')}/messages"

    def build_payload(self, recipient: str, body: str) -> dict:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient.lstrip("+"),
            "type": "text",
            "text": {"body": truncate_message(body, self.config.whatsapp_max_message_chars)},
        }

    async def send_text(self, recipient: str, body: str) -> dict:
        """Send one text message. Raises ExternalServiceError on a non-2xx response."""
        if not self.config.whatsapp_api_key:
            raise ConfigurationError("WHATSAPP_API_KEY is not configured")
        if not recipient:
            raise ValueError("recipient is required")

        payload = self.build_payload(recipient, body)
        headers = {
            "D360-API-KEY": self.config.whatsapp_api_key,
            "Content-Type": "application/json",
        }

        async def post() -> httpx.Response:
            try:
                async with httpx.AsyncClient(
                    timeout=self.config.whatsapp_send_timeout_seconds,
                    transport=self._transport,
                ) as client:
                    response = await client.post(self.messages_url, headers=headers, json=payload)
            except httpx.TimeoutException as exc:
                raise RetryableExternalError(SERVICE, f"timeout: {exc}") from exc
            except httpx.TransportError as exc:
                raise RetryableExternalError(SERVICE, f"transport: {exc}") from exc
            if not 200 <= response.status_code < 300:
                raise classify_http_error(SERVICE, response.status_code, response.text[:300])
            return response

        response = await retry_async(
            post,
            max_retries=max(self.config.whatsapp_send_max_attempts - 1, 0),
            base_seconds=SEND_BACKOFF_BASE_SECONDS,
            max_seconds=SEND_BACKOFF_MAX_SECONDS,
            sleep_func=self._sleep_func,
            label="whatsapp.send_text",
        )
        logger.info(
            "WhatsApp message sent",
            extra={
                "context": {
                    "to": mask_phone(recipient),
                    "status_code": response.status_code,
                    "chars": len(payload["text"]["body"]),
                }
            },
        )
        try:
            return response.json()
        except ValueError:
            return {}
