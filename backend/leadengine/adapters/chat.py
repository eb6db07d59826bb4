"""Chat adapter - replies to chat-widget leads through the widget's webhook."""

import httpx
import structlog

from leadengine.config import settings
from leadengine.errors import DeliveryError

logger = structlog.get_logger()


class ChatWebhookTransport:
    channel = "chat"

    def __init__(self, webhook_url: str | None = None, timeout: float = 10.0):
        self.webhook_url = webhook_url if webhook_url is not None else settings.chat_webhook_url
        self.timeout = timeout

    async def send(self, lead, subject: str, body: str) -> None:
        if not self.webhook_url:
            raise DeliveryError("Chat webhook not configured")

        payload = {
            "lead_id": str(lead.id),
            "email": lead.email,
            "conversation": lead.source_detail,
            "text": body,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.webhook_url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("chat_reply_failed", lead_id=str(lead.id), error=str(e))
            raise DeliveryError(f"Chat delivery failed: {e}") from e
        logger.info("chat_reply_sent", lead_id=str(lead.id))
