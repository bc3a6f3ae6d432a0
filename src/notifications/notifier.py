"""Notifier protocol — the delivery capability the scheduler depends on."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of an accepted send."""

    message_id: str | None
    recipient: str
    timestamp: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "message_id": self.message_id,
            "recipient": self.recipient,
            "timestamp": self.timestamp,
        }


class DeliveryError(Exception):
    """A send was rejected or could not be attempted.

    The message is human-readable and already classified (rate limited,
    unauthorized, recipient unreachable, ...).

    Attributes:
        code: Provider error code, when the provider returned one.
        status: HTTP status of the provider response, if any.
    """

    def __init__(self, message: str, *, code: int | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status = status


@runtime_checkable
class Notifier(Protocol):
    """Protocol that message delivery backends must satisfy.

    Both methods raise :class:`DeliveryError` on failure.
    """

    async def send_template(self, recipient: str) -> DeliveryResult:
        """Send the default template message."""
        ...

    async def send_text(self, recipient: str, body: str) -> DeliveryResult:
        """Send a free-text message."""
        ...
