"""Notification protocol for outbound relay messages.

Provides an abstraction layer for sending short text notifications (session
tokens, terminal failures) so the relay is not tied to one chat platform.
"""

import base64
import hashlib
import hmac
import logging
import time
from typing import Any, Protocol

import httpx
import tenacity

logger = logging.getLogger(__name__)


class NotificationProtocol(Protocol):
    """Protocol for sending notifications to the remote channel.

    This protocol defines the interface that notification backends must implement.
    It decouples session dispatch and failure reporting from specific services.
    """

    channel: str

    async def send(self, message: str) -> bool:
        """Send a notification message.

        Args:
            message: Plain text message content.

        Returns:
            True on success, False on failure.
        """
        ...


def sign_webhook(secret: str, timestamp: int) -> str:
    """Compute the signature a custom-bot webhook expects.

    The key is "{timestamp}\\n{secret}" and the signed message is empty,
    base64 encoded.

    Args:
        secret: Signing secret configured on the bot.
        timestamp: Unix timestamp in seconds.

    Returns:
        Base64 signature string.
    """
    string_to_sign = f"{timestamp}\n{secret}".encode()
    digest = hmac.new(string_to_sign, b"", hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


class WebhookNotifier:
    """Feishu/Lark custom-bot implementation of NotificationProtocol.

    Posts text messages to the bot webhook URL, signing them when a secret
    is configured.
    """

    channel = "feishu"

    def __init__(self, webhook_url: str, secret: str = "", timeout: float = 10.0) -> None:
        """Initialize with a bot webhook URL.

        Args:
            webhook_url: Custom-bot webhook URL.
            secret: Optional signing secret.
            timeout: Request timeout in seconds.
        """
        self._webhook_url = webhook_url
        self._secret = secret
        self._timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self._webhook_url)

    def build_payload(self, message: str) -> dict[str, Any]:
        payload: dict[str, Any] = {"msg_type": "text", "content": {"text": message}}
        if self._secret:
            timestamp = int(time.time())
            payload["timestamp"] = str(timestamp)
            payload["sign"] = sign_webhook(self._secret, timestamp)
        return payload

    @tenacity.retry(
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=1, min=1, max=10),
        retry=tenacity.retry_if_exception_type(
            (httpx.TimeoutException, httpx.ConnectError, httpx.HTTPStatusError)
        ),
        retry_error_callback=lambda _: False,  # Don't raise on final failure
        reraise=False,
    )
    async def _post(self, payload: dict[str, Any]) -> bool:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._webhook_url, json=payload)
            response.raise_for_status()
            body = response.json()

        if body.get("code", 0) != 0:
            logger.error("Webhook API error: %s", body.get("msg", "Unknown error"))
            return False
        return True

    async def send(self, message: str) -> bool:
        """Send a text message to the bot webhook.

        Retries up to 3 times with exponential backoff on timeout,
        connection errors, or HTTP errors.

        Args:
            message: Message text.

        Returns:
            True if the platform accepted the message, False otherwise.
        """
        if not self._webhook_url:
            logger.warning("Notification webhook URL not configured")
            return False

        try:
            return await self._post(self.build_payload(message))
        except ValueError as e:
            logger.error("Invalid JSON response from webhook: %s", e)
            return False
