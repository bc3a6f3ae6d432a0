"""Tests for the WhatsApp Cloud API client."""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from src.notifications.notifier import DeliveryError
from src.whatsapp import client
from src.whatsapp.client import classify_error, send_template, send_text

API_URL = "https://graph.facebook.com/v22.0/123456/messages"


@pytest.fixture(autouse=True)
def _reset_session():
    """Reset the module-level aiohttp session between tests."""
    client._session = None
    yield
    client._session = None


@pytest.fixture()
def _wa_settings():
    """Provide valid WhatsApp settings."""
    with patch("src.whatsapp.client.settings") as mock_settings:
        mock_settings.whatsapp_token = "test-token"
        mock_settings.messages_url = API_URL
        mock_settings.whatsapp_template_name = "hello_world"
        mock_settings.whatsapp_template_language = "en_US"
        mock_settings.missing_required.return_value = []
        yield mock_settings


def _mock_session(status: int = 200, data: dict | None = None) -> MagicMock:
    mock_resp = AsyncMock()
    mock_resp.status = status
    mock_resp.reason = "OK" if status < 400 else "Bad Request"
    mock_resp.json = AsyncMock(
        return_value={"messages": [{"id": "wamid.ABC"}]} if data is None else data
    )
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)

    mock_session = MagicMock()
    mock_session.post = MagicMock(return_value=mock_resp)
    mock_session.closed = False
    return mock_session


def _payload(mock_session: MagicMock) -> dict:
    call_kwargs = mock_session.post.call_args
    return call_kwargs.kwargs.get("json") or call_kwargs[1].get("json")


# -- send_template ---------------------------------------------------------------


@pytest.mark.usefixtures("_wa_settings")
async def test_send_template_success() -> None:
    session = _mock_session()
    with patch("src.whatsapp.client._get_session", return_value=session):
        result = await send_template("15559876543")

    assert result.message_id == "wamid.ABC"
    assert result.recipient == "15559876543"
    assert "T" in result.timestamp

    assert session.post.call_args.args[0] == API_URL
    payload = _payload(session)
    assert payload == {
        "messaging_product": "whatsapp",
        "to": "15559876543",
        "type": "template",
        "template": {"name": "hello_world", "language": {"code": "en_US"}},
    }


@pytest.mark.usefixtures("_wa_settings")
async def test_send_template_overrides() -> None:
    session = _mock_session()
    with patch("src.whatsapp.client._get_session", return_value=session):
        await send_template("15559876543", template_name="reminder", language_code="en_GB")

    template = _payload(session)["template"]
    assert template == {"name": "reminder", "language": {"code": "en_GB"}}


@pytest.mark.usefixtures("_wa_settings")
async def test_send_template_requires_recipient() -> None:
    with pytest.raises(DeliveryError, match="Recipient"):
        await send_template("")


@pytest.mark.usefixtures("_wa_settings")
async def test_send_template_not_approved() -> None:
    session = _mock_session(400, {"error": {"code": 131000, "message": "Something went wrong"}})
    with (
        patch("src.whatsapp.client._get_session", return_value=session),
        pytest.raises(DeliveryError, match="template is approved") as exc_info,
    ):
        await send_template("15559876543")

    assert exc_info.value.code == 131000
    assert exc_info.value.status == 400


# -- send_text -------------------------------------------------------------------


@pytest.mark.usefixtures("_wa_settings")
async def test_send_text_success() -> None:
    session = _mock_session()
    with patch("src.whatsapp.client._get_session", return_value=session):
        result = await send_text("15559876543", "Hello!")

    assert result.message_id == "wamid.ABC"
    payload = _payload(session)
    assert payload["type"] == "text"
    assert payload["text"] == {"body": "Hello!"}


@pytest.mark.usefixtures("_wa_settings")
async def test_send_text_requires_body() -> None:
    session = _mock_session()
    with (
        patch("src.whatsapp.client._get_session", return_value=session),
        pytest.raises(DeliveryError, match="required"),
    ):
        await send_text("15559876543", "")
    session.post.assert_not_called()


@pytest.mark.usefixtures("_wa_settings")
async def test_send_text_outside_conversation_window() -> None:
    session = _mock_session(400, {"error": {"code": 131000, "message": "x"}})
    with (
        patch("src.whatsapp.client._get_session", return_value=session),
        pytest.raises(DeliveryError, match="24-hour conversation window"),
    ):
        await send_text("15559876543", "Hello!")


@pytest.mark.usefixtures("_wa_settings")
async def test_send_text_network_error() -> None:
    session = MagicMock()
    session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("Connection refused"))
    session.closed = False

    with (
        patch("src.whatsapp.client._get_session", return_value=session),
        pytest.raises(DeliveryError, match="Could not reach"),
    ):
        await send_text("15559876543", "Hello!")


async def test_send_not_configured() -> None:
    with patch("src.whatsapp.client.settings") as mock_settings:
        mock_settings.missing_required.return_value = ["WHATSAPP_TOKEN"]
        with pytest.raises(DeliveryError, match="not configured"):
            await send_text("15559876543", "Hello!")


@pytest.mark.usefixtures("_wa_settings")
async def test_auth_header() -> None:
    """The lazy session is created with the bearer token."""
    with patch("src.whatsapp.client.aiohttp.ClientSession") as mock_cls:
        mock_cls.return_value = _mock_session()

        await send_template("15559876543")

        mock_cls.assert_called_once()
        headers = mock_cls.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer test-token"


async def test_close_session_without_session() -> None:
    # Should not raise
    await client.close_session()
    assert client._session is None


# -- classify_error --------------------------------------------------------------


@pytest.mark.parametrize(
    ("code", "text", "expected"),
    [
        (131026, False, "blocked your business number"),
        (131047, True, "Rate limit exceeded"),
        (131051, True, "not registered"),
    ],
)
def test_classify_known_codes(code: int, text: bool, expected: str) -> None:
    err = classify_error(400, {"error": {"code": code, "message": "raw"}}, text=text)
    assert expected in str(err)
    assert err.code == code


def test_classify_unauthorized() -> None:
    err = classify_error(401, {"error": {"code": 190, "message": "token expired"}}, text=False)
    assert "Unauthorized" in str(err)
    assert err.status == 401


def test_classify_falls_back_to_provider_message() -> None:
    err = classify_error(400, {"error": {"code": 100, "message": "Invalid parameter"}}, text=True)
    assert str(err) == "Invalid parameter"


def test_classify_without_body() -> None:
    err = classify_error(503, {}, text=True, reason="Service Unavailable")
    assert str(err) == "Service Unavailable"
    assert err.code is None
