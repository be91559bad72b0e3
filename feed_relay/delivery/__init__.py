"""Delivery of formatted messages under cross-shard mutual exclusion."""

from .client import DeliveryClient, DeliveryError
from .mutex import (
    CoordinationBackendError,
    DeliveryLock,
    DeliveryLockTimeout,
    LocalDeliveryLock,
    RedisDeliveryLock,
    build_delivery_lock,
)

__all__ = [
    "CoordinationBackendError",
    "DeliveryClient",
    "DeliveryError",
    "DeliveryLock",
    "DeliveryLockTimeout",
    "LocalDeliveryLock",
    "RedisDeliveryLock",
    "build_delivery_lock",
]
