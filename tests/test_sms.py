"""SMS gateway client."""

import json

import httpx
import pytest

from authcore.core.exceptions import DeliveryFailed
from authcore.services.sms import ConsoleSmsSender, HttpSmsSender, build_sms_sender


def _sender(handler) -> HttpSmsSender:
    return HttpSmsSender(
        api_url="https://sms.example.test/send",
        api_key="key-123",
        sender="AuthCore",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_http_sender_posts_message():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "queued"})

    await _sender(handler).send("+79991234567", "Your verification code: 1234")

    assert len(seen) == 1
    request = seen[0]
    assert request.headers["authorization"] == "Bearer key-123"
    assert json.loads(request.content) == {
        "to": "+79991234567",
        "from": "AuthCore",
        "text": "Your verification code: 1234",
    }


@pytest.mark.asyncio
async def test_http_sender_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(DeliveryFailed):
        await _sender(handler).send("+79991234567", "hi")


@pytest.mark.asyncio
async def test_http_sender_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(DeliveryFailed):
        await _sender(handler).send("+79991234567", "hi")


def test_build_sms_sender(settings):
    assert isinstance(build_sms_sender(settings), ConsoleSmsSender)
    http_settings = settings.model_copy(
        update={"SMS_PROVIDER": "http", "SMS_API_URL": "https://sms.example.test/send"}
    )
    assert isinstance(build_sms_sender(http_settings), HttpSmsSender)
