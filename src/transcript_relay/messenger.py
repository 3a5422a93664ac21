"""Outbound notification channels.

The monitor only needs ``send_text``. A channel that can render questions
natively may also implement ``send_ask_user_question``; otherwise the
delivery pipeline falls back to plain text.
"""

import logging
from typing import Protocol, runtime_checkable

import httpx

from .models import Interaction, SendResult

logger = logging.getLogger(__name__)


@runtime_checkable
class Messenger(Protocol):
    async def send_text(self, text: str) -> SendResult: ...


@runtime_checkable
class QuestionMessenger(Messenger, Protocol):
    async def send_ask_user_question(self, question: Interaction) -> SendResult: ...


class LogMessenger:
    """Writes deliveries to the log instead of a chat. Used for dry runs."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self.sent: list[str] = []

    async def send_text(self, text: str) -> SendResult:
        self.sent.append(text)
        self._logger.info(f"Delivered message ({len(text)} chars):\n{text}")
        return SendResult(success=True)


class WebhookMessenger:
    """POSTs ``{"text": ...}`` JSON to an incoming-webhook URL."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        """Initialize the webhook messenger.

        Args:
            url: Webhook endpoint.
            timeout: Per-request timeout in seconds.
            client: Shared client; one is created (and owned) if omitted.
            logger: Logger to use instead of the module logger.
        """
        self.url = url
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    async def send_text(self, text: str) -> SendResult:
        try:
            response = await self._client.post(self.url, json={"text": text})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error = f"HTTP {e.response.status_code}"
            self._logger.error(f"Webhook rejected message: {error}")
            return SendResult(success=False, error=error)
        except httpx.HTTPError as e:
            self._logger.error(f"Webhook request failed: {e}")
            return SendResult(success=False, error=str(e))
        return SendResult(success=True)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
