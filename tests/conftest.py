"""Shared test fixtures."""

from unittest.mock import AsyncMock

import pytest

from src.notifications.notifier import DeliveryResult

RECIPIENT = "15551234567"


@pytest.fixture
def delivery_result() -> DeliveryResult:
    return DeliveryResult(
        message_id="wamid.TEST",
        recipient=RECIPIENT,
        timestamp="2026-01-01T00:00:00+00:00",
    )


@pytest.fixture
def notifier(delivery_result: DeliveryResult) -> AsyncMock:
    """Notifier double that records sends and always succeeds."""
    n = AsyncMock()
    n.send_template = AsyncMock(return_value=delivery_result)
    n.send_text = AsyncMock(return_value=delivery_result)
    return n
