"""REST delivery of formatted messages, one locked call at a time."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from ..config import DeliveryConfig, WebhookConfig
from .mutex import DeliveryLock


class DeliveryError(RuntimeError):
    """The destination rejected a message."""

    def __init__(self, message: str, status_code: int | None = None, code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class DeliveryClient:
    """Send channel and webhook messages through a shared delivery lock."""

    def __init__(
        self,
        lock: DeliveryLock,
        http_client: httpx.Client,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.lock = lock
        self._client = http_client
        self.logger = logger or structlog.get_logger("feed_relay.delivery")

    @classmethod
    def from_config(
        cls, config: DeliveryConfig, lock: DeliveryLock, transport: httpx.BaseTransport | None = None
    ) -> "DeliveryClient":
        headers = {"User-Agent": "feed-relay (https://github.com/feed-relay, 0.1)"}
        if config.bot_token:
            headers["Authorization"] = f"Bot {config.bot_token}"
        client = httpx.Client(
            base_url=config.api_base.rstrip("/"),
            headers=headers,
            timeout=config.request_timeout,
            transport=transport,
        )
        return cls(lock, client)

    def close(self) -> None:
        self._client.close()
        self.lock.close()

    def send_channel_message(self, channel_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return self._post(f"/channels/{channel_id}/messages", payload, target=f"channel:{channel_id}")

    def send_webhook_message(self, webhook: WebhookConfig, payload: dict[str, Any]) -> dict[str, Any]:
        body = dict(payload)
        if webhook.name and "username" not in body:
            body["username"] = webhook.name
        if webhook.avatar and "avatar_url" not in body:
            body["avatar_url"] = webhook.avatar
        # wait=true makes the webhook endpoint return the created message
        return self._post(
            f"/webhooks/{webhook.id}/{webhook.token}",
            body,
            target=f"webhook:{webhook.id}",
            params={"wait": "true"},
        )

    def _post(
        self,
        path: str,
        payload: dict[str, Any],
        target: str,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        with self.lock.hold():
            try:
                response = self._client.post(path, json=payload, params=params)
            except httpx.HTTPError as exc:
                raise DeliveryError(f"Delivery to {target} failed: {exc}") from exc
        if response.is_success:
            self.logger.debug("message_delivered", target=target, status=response.status_code)
            return response.json() if response.content else {}
        code = _error_code(response)
        raise DeliveryError(
            f"Delivery to {target} rejected with status {response.status_code}",
            status_code=response.status_code,
            code=code,
        )


def _error_code(response: httpx.Response) -> int | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("code"), int):
        return body["code"]
    return None


__all__ = ["DeliveryClient", "DeliveryError"]
