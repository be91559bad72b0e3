"""Pydantic models used across feed-relay configuration flow."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class ScheduleType(str, Enum):
    """Scheduler modes for cycles and maintenance jobs."""

    CRON = "cron"
    INTERVAL = "interval"
    ONCE = "once"


class ScheduleConfig(BaseModel):
    """Configuration describing when a job should run."""

    type: ScheduleType = Field(default=ScheduleType.ONCE)
    value: Any = Field(
        default=None,
        description="Cron expression, interval seconds or ISO datetime, depending on type.",
    )

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        if (
            self.type is ScheduleType.ONCE
            and self.value is not None
            and not isinstance(self.value, str)
        ):
            raise ValueError("Once schedule expects ISO datetime string or null")
        return self


class WebhookConfig(BaseModel):
    """Webhook a subscription delivers through instead of the bot user."""

    id: str
    token: str
    name: str | None = None
    avatar: str | None = None


class FeedSubscription(BaseModel):
    """One destination's configuration for a feed link."""

    model_config = ConfigDict(populate_by_name=True)

    feed_id: str = Field(validation_alias=AliasChoices("feed_id", "_id", "id"))
    link: str = Field(validation_alias=AliasChoices("link", "url"))
    guild_id: str = Field(validation_alias=AliasChoices("guild_id", "guild"))
    channel_id: str = Field(validation_alias=AliasChoices("channel_id", "channel"))
    webhook: WebhookConfig | None = None
    negative_comparisons: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("negative_comparisons", "ncomparisons"),
    )
    positive_comparisons: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("positive_comparisons", "pcomparisons"),
    )
    article_max_age: int | None = Field(
        default=None,
        validation_alias=AliasChoices("article_max_age", "articleMaxAge"),
    )
    check_dates: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("check_dates", "checkDates"),
    )
    disabled: bool = False

    @field_validator("negative_comparisons", "positive_comparisons", mode="before")
    @classmethod
    def _coerce_comparisons(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(item) for item in value if item]

    @field_validator("feed_id", "guild_id", "channel_id", mode="before")
    @classmethod
    def _coerce_snowflake(cls, value: Any) -> str:
        return str(value)

    @field_validator("article_max_age")
    @classmethod
    def _validate_max_age(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError("article_max_age must be >= 0")
        return value

    @property
    def comparison_properties(self) -> list[str]:
        return [*self.negative_comparisons, *self.positive_comparisons]


class FeedDefaults(BaseModel):
    """Global fallbacks for per-subscription settings."""

    check_dates: bool = True
    cycle_max_age: int = Field(default=1, ge=0, description="Age cutoff in days.")


class WorkerPoolConfig(BaseModel):
    """Process pool controls. ``max_workers=None`` lets the pool grow on demand."""

    max_workers: int | None = Field(default=None, ge=1)
    acquire_timeout: float | None = None
    job_timeout: float | None = 120.0
    start_method: str | None = None

    @field_validator("start_method")
    @classmethod
    def _validate_start_method(cls, value: str | None) -> str | None:
        if value is not None and value not in ("fork", "spawn", "forkserver"):
            raise ValueError("start_method must be fork, spawn or forkserver")
        return value


class DeliveryConfig(BaseModel):
    """Outbound delivery and cross-shard coordination."""

    redis_url: str | None = None
    lock_namespace: str = "feed_relay:delivery"
    lock_timeout: float = 30.0
    blocking_timeout: float | None = None
    api_base: str = "https://discord.com/api/v10"
    bot_token: str = ""
    request_timeout: float = 15.0


class ConsistencyConfig(BaseModel):
    """Subscriber consistency job settings."""

    max_concurrency: int = Field(default=10, ge=1)
    schedule: ScheduleConfig = Field(
        default_factory=lambda: ScheduleConfig(type=ScheduleType.CRON, value="0 */6 * * *")
    )


class GlobalConfig(BaseModel):
    """Global controls shared across subscriptions."""

    feeds: FeedDefaults = Field(default_factory=FeedDefaults)
    worker_pool: WorkerPoolConfig = Field(default_factory=WorkerPoolConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    consistency: ConsistencyConfig = Field(default_factory=ConsistencyConfig)
    refresh_schedule: ScheduleConfig = Field(
        default_factory=lambda: ScheduleConfig(type=ScheduleType.INTERVAL, value=600)
    )
    thread_pool_workers: int = Field(default=8, ge=1)
    history_path: Path = Field(default=Path("data/history/articles.db"))
    debug_feeds: list[str] = Field(default_factory=list)

    @field_validator("history_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolved_history_path(self, base_dir: Path) -> Path:
        """Return the history database path relative to the project root."""

        if not self.history_path.is_absolute():
            return (base_dir / self.history_path).resolve()
        return self.history_path


__all__ = [
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
