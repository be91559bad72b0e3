"""Mutual exclusion around outbound delivery calls.

Shards running in separate processes share the destination's REST rate
limits, so when a Redis URL is configured every send goes through a Redis
lock. Without one, a process-local lock keeps the same code path.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from threading import Lock
from typing import Any, Iterator

import redis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..config import DeliveryConfig


class CoordinationBackendError(RuntimeError):
    """The coordination backend is unreachable. Never silently bypassed."""


class DeliveryLockTimeout(RuntimeError):
    """The lock could not be obtained within the blocking timeout."""


class DeliveryLock(ABC):
    """Uniform lock contract for delivery calls."""

    @abstractmethod
    @contextmanager
    def hold(self) -> Iterator[None]:
        """Hold the lock for the duration of the block."""

    def close(self) -> None:
        return


class LocalDeliveryLock(DeliveryLock):
    """In-process lock used when no coordination backend is configured."""

    def __init__(self) -> None:
        self._lock = Lock()

    @contextmanager
    def hold(self) -> Iterator[None]:
        with self._lock:
            yield


class RedisDeliveryLock(DeliveryLock):
    """Lock shared by every shard through one Redis key."""

    def __init__(
        self,
        client: Any,
        namespace: str = "feed_relay:delivery",
        timeout: float = 30.0,
        blocking_timeout: float | None = None,
    ) -> None:
        self.client = client
        self.name = f"{namespace}:lock"
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self.logger = structlog.get_logger("feed_relay.delivery.mutex").bind(lock=self.name)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisDeliveryLock":
        client = redis.Redis.from_url(url)
        try:
            client.ping()
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise CoordinationBackendError(f"Cannot reach coordination backend at {url}") from exc
        return cls(client, **kwargs)

    @contextmanager
    def hold(self) -> Iterator[None]:
        lock = self.client.lock(
            self.name, timeout=self.timeout, blocking_timeout=self.blocking_timeout
        )
        try:
            acquired = lock.acquire()
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise CoordinationBackendError("Lost connection to coordination backend") from exc
        if not acquired:
            raise DeliveryLockTimeout(
                f"Could not acquire {self.name} within {self.blocking_timeout}s"
            )
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Expired while held; another holder may already own it.
                self.logger.warning("delivery_lock_expired", timeout=self.timeout)
            except (RedisConnectionError, RedisTimeoutError) as exc:
                raise CoordinationBackendError("Lost connection to coordination backend") from exc

    def close(self) -> None:
        self.client.close()


def build_delivery_lock(config: DeliveryConfig) -> DeliveryLock:
    if config.redis_url:
        return RedisDeliveryLock.from_url(
            config.redis_url,
            namespace=config.lock_namespace,
            timeout=config.lock_timeout,
            blocking_timeout=config.blocking_timeout,
        )
    return LocalDeliveryLock()


__all__ = [
    "CoordinationBackendError",
    "DeliveryLock",
    "DeliveryLockTimeout",
    "LocalDeliveryLock",
    "RedisDeliveryLock",
    "build_delivery_lock",
]
