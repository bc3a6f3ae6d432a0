"""WhatsApp implementation of the Notifier protocol."""

from __future__ import annotations

from src.notifications.notifier import DeliveryResult
from src.whatsapp import client


class WhatsAppNotifier:
    """Sends scheduled messages through the WhatsApp Cloud API."""

    async def send_template(self, recipient: str) -> DeliveryResult:
        """Send the configured default template."""
        return await client.send_template(recipient)

    async def send_text(self, recipient: str, body: str) -> DeliveryResult:
        return await client.send_text(recipient, body)
