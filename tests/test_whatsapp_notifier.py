"""Tests for WhatsAppNotifier."""

from unittest.mock import AsyncMock, patch

from src.notifications.notifier import DeliveryResult, Notifier
from src.notifications.whatsapp_notifier import WhatsAppNotifier


def test_satisfies_protocol() -> None:
    assert isinstance(WhatsAppNotifier(), Notifier)


async def test_send_template_delegates(delivery_result: DeliveryResult) -> None:
    with patch(
        "src.whatsapp.client.send_template", AsyncMock(return_value=delivery_result)
    ) as mock_send:
        result = await WhatsAppNotifier().send_template("15551234567")

    mock_send.assert_awaited_once_with("15551234567")
    assert result is delivery_result


async def test_send_text_delegates(delivery_result: DeliveryResult) -> None:
    with patch(
        "src.whatsapp.client.send_text", AsyncMock(return_value=delivery_result)
    ) as mock_send:
        result = await WhatsAppNotifier().send_text("15551234567", "Hi")

    mock_send.assert_awaited_once_with("15551234567", "Hi")
    assert result.message_id == "wamid.TEST"


def test_delivery_result_to_dict(delivery_result: DeliveryResult) -> None:
    assert delivery_result.to_dict() == {
        "success": True,
        "message_id": "wamid.TEST",
        "recipient": "15551234567",
        "timestamp": "2026-01-01T00:00:00+00:00",
    }
