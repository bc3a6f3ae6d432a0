"""Message delivery abstraction layer."""

from src.notifications.notifier import DeliveryError, DeliveryResult, Notifier
from src.notifications.whatsapp_notifier import WhatsAppNotifier

__all__ = [
    "DeliveryError",
    "DeliveryResult",
    "Notifier",
    "WhatsAppNotifier",
]
