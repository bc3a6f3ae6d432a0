"""WhatsApp Cloud API client using aiohttp."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import Any

import aiohttp

from src.config import settings
from src.notifications.notifier import DeliveryError, DeliveryResult

logger = logging.getLogger(__name__)

# Graph API error codes with a friendlier explanation.
TEMPLATE_OR_WINDOW_ERROR = 131000
RECIPIENT_UNREACHABLE = 131026
RATE_LIMITED = 131047
NOT_REGISTERED = 131051

_TEMPLATE_HINTS = {
    TEMPLATE_OR_WINDOW_ERROR: (
        "Template message failed. Please verify your template is approved "
        "in Meta Business Manager."
    ),
}

_TEXT_HINTS = {
    TEMPLATE_OR_WINDOW_ERROR: (
        "Cannot send custom text message. You need an active 24-hour conversation "
        "window with this recipient. Use a template message instead, or wait for "
        "the recipient to message you first."
    ),
    NOT_REGISTERED: "This phone number is not registered with WhatsApp Business API.",
}

_COMMON_HINTS = {
    RECIPIENT_UNREACHABLE: (
        "Message could not be delivered. The recipient may have blocked your business number."
    ),
    RATE_LIMITED: "Rate limit exceeded. Please wait before sending more messages.",
}

_session: aiohttp.ClientSession | None = None


def _get_session() -> aiohttp.ClientSession:
    """Return (and lazily create) the shared aiohttp session."""
    global _session  # noqa: PLW0603
    if _session is None or _session.closed:
        _session = aiohttp.ClientSession(
            headers={"Authorization": f"Bearer {settings.whatsapp_token}"},
        )
    return _session


async def close_session() -> None:
    """Close the shared session, if one was opened."""
    global _session  # noqa: PLW0603
    if _session is not None and not _session.closed:
        await _session.close()
    _session = None


def classify_error(
    status: int,
    data: dict[str, Any],
    *,
    text: bool,
    reason: str = "",
) -> DeliveryError:
    """Turn a non-2xx Graph API response into a DeliveryError with a readable message."""
    error = data.get("error") or {}
    code = error.get("code")
    hints = {**_COMMON_HINTS, **(_TEXT_HINTS if text else _TEMPLATE_HINTS)}

    if code in hints:
        message = hints[code]
    elif status == 401:
        message = "Unauthorized. Check that WHATSAPP_TOKEN is valid and has not expired."
    else:
        message = error.get("message") or reason or f"WhatsApp API returned HTTP {status}"
    return DeliveryError(message, code=code, status=status)


async def _post(payload: dict[str, Any], *, text: bool) -> DeliveryResult:
    if settings.missing_required():
        msg = "WhatsApp not configured — missing WHATSAPP_PHONE_NUMBER_ID or WHATSAPP_TOKEN"
        raise DeliveryError(msg)

    recipient = payload["to"]
    session = _get_session()
    started = time.monotonic()
    try:
        async with session.post(settings.messages_url, json=payload) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = {}
            if not isinstance(data, dict):
                data = {}
            if resp.status >= 400:
                logger.error("WhatsApp API error (%d): %s", resp.status, str(data)[:200])
                raise classify_error(resp.status, data, text=text, reason=resp.reason or "")
    except (aiohttp.ClientError, TimeoutError) as exc:
        logger.exception("WhatsApp send failed (network error)")
        msg = f"Could not reach WhatsApp API: {exc}"
        raise DeliveryError(msg) from exc

    messages = data.get("messages") or [{}]
    message_id = messages[0].get("id")
    logger.info(
        "WhatsApp %s message sent to %s in %dms (id=%s)",
        payload["type"],
        recipient,
        int((time.monotonic() - started) * 1000),
        message_id,
    )
    return DeliveryResult(
        message_id=message_id,
        recipient=recipient,
        timestamp=datetime.now(UTC).isoformat(),
        data=data,
    )


async def send_template(
    to: str,
    template_name: str | None = None,
    language_code: str | None = None,
) -> DeliveryResult:
    """Send an approved template message. Raises DeliveryError on failure."""
    if not to:
        msg = "Recipient phone number is required"
        raise DeliveryError(msg)

    name = template_name or settings.whatsapp_template_name
    logger.info("Sending template '%s' to %s", name, to)
    payload = {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "template",
        "template": {
            "name": name,
            "language": {"code": language_code or settings.whatsapp_template_language},
        },
    }
    return await _post(payload, text=False)


async def send_text(to: str, body: str) -> DeliveryResult:
    """Send a free-text message. Raises DeliveryError on failure."""
    if not to or not body:
        msg = "Recipient and message are required"
        raise DeliveryError(msg)

    logger.info("Sending text message to %s (%d chars)", to, len(body))
    payload = {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "text",
        "text": {"body": body},
    }
    return await _post(payload, text=True)
