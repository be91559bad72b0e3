from __future__ import annotations

import json
from contextlib import contextmanager

import httpx
import pytest

from feed_relay.config import DeliveryConfig, WebhookConfig
from feed_relay.delivery import DeliveryClient, DeliveryError, DeliveryLock


class RecordingLock(DeliveryLock):
    def __init__(self) -> None:
        self.events: list[str] = []

    @contextmanager
    def hold(self):
        self.events.append("acquire")
        try:
            yield
        finally:
            self.events.append("release")


def _client(handler, lock: DeliveryLock | None = None, **config) -> DeliveryClient:
    return DeliveryClient.from_config(
        DeliveryConfig(api_base="https://discord.test/api", bot_token="secret", **config),
        lock or RecordingLock(),
        transport=httpx.MockTransport(handler),
    )


def test_channel_message_posted_under_lock() -> None:
    lock = RecordingLock()
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        lock.events.append("send")
        requests.append(request)
        return httpx.Response(200, json={"id": "m1"})

    client = _client(handler, lock)
    result = client.send_channel_message("200", {"content": "hello"})

    assert result == {"id": "m1"}
    assert lock.events == ["acquire", "send", "release"]
    assert requests[0].url.path == "/api/channels/200/messages"
    assert requests[0].headers["authorization"] == "Bot secret"
    assert json.loads(requests[0].content) == {"content": "hello"}


def test_webhook_message_uses_webhook_identity() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": "m2"})

    webhook = WebhookConfig(id="55", token="tok", name="Relay", avatar="https://img/a.png")
    _client(handler).send_webhook_message(webhook, {"content": "hi"})

    request = requests[0]
    assert request.url.path == "/api/webhooks/55/tok"
    assert request.url.params["wait"] == "true"
    assert json.loads(request.content) == {
        "content": "hi",
        "username": "Relay",
        "avatar_url": "https://img/a.png",
    }


def test_rejected_message_raises_with_code() -> None:
    lock = RecordingLock()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"code": 50013, "message": "Missing Permissions"})

    with pytest.raises(DeliveryError) as excinfo:
        _client(handler, lock).send_channel_message("200", {"content": "x"})

    assert excinfo.value.status_code == 403
    assert excinfo.value.code == 50013
    assert lock.events == ["acquire", "release"]


def test_transport_error_raises_delivery_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(DeliveryError):
        _client(handler).send_channel_message("200", {"content": "x"})


def test_empty_success_body_returns_empty_dict() -> None:
    client = _client(lambda request: httpx.Response(204))

    assert client.send_channel_message("200", {"content": "x"}) == {}
