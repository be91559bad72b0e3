"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    ConsistencyConfig,
    DeliveryConfig,
    FeedDefaults,
    FeedSubscription,
    GlobalConfig,
    ScheduleConfig,
    ScheduleType,
    WebhookConfig,
    WorkerPoolConfig,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "ConsistencyConfig",
    "DeliveryConfig",
    "FeedDefaults",
    "FeedSubscription",
    "GlobalConfig",
    "ScheduleConfig",
    "ScheduleType",
    "WebhookConfig",
    "WorkerPoolConfig",
]
