"""Configuration loading helpers for feed-relay."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml

from .models import FeedSubscription, GlobalConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
FEED_CONFIG_SUFFIX = ".yaml"
HOME_ENV = "FEED_RELAY_HOME"
REDIS_URL_ENV = "FEED_RELAY_REDIS_URL"
BOT_TOKEN_ENV = "FEED_RELAY_BOT_TOKEN"


def _slugify(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-")


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from project root."""

    project_root: Path | None = None
    data_dir: Path | None = None
    history_dir: Path | None = None
    feeds_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get(HOME_ENV)
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (self.project_root or Path(__file__).resolve().parents[2]).resolve()
        self.project_root = root
        self.data_dir = (root / "data").resolve()
        self.history_dir = (self.data_dir / "history").resolve()
        self.feeds_dir = (self.data_dir / "feeds").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.history_dir, self.feeds_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME


class ConfigRepository:
    """Repository encapsulating config IO and schema validation."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global_cache: GlobalConfig | None = None

    # ------------------------------------------------------------------
    # Global configuration helpers
    # ------------------------------------------------------------------
    def load_global_config(self) -> GlobalConfig:
        if self._global_cache is not None:
            return self._global_cache
        path = self.locator.global_config_path()
        if path.exists():
            global_cfg = GlobalConfig.model_validate(_read_file(path))
        else:
            global_cfg = GlobalConfig()
            self.save_global_config(global_cfg)
        self._global_cache = self._apply_environment(global_cfg)
        return self._global_cache

    def save_global_config(self, config: GlobalConfig) -> None:
        path = self.locator.global_config_path()
        _write_file(path, config.model_dump(mode="json"))
        self._global_cache = config

    @staticmethod
    def _apply_environment(config: GlobalConfig) -> GlobalConfig:
        overrides: dict[str, str] = {}
        redis_url = os.environ.get(REDIS_URL_ENV)
        if redis_url:
            overrides["redis_url"] = redis_url
        bot_token = os.environ.get(BOT_TOKEN_ENV)
        if bot_token:
            overrides["bot_token"] = bot_token
        if not overrides:
            return config
        delivery = config.delivery.model_copy(update=overrides)
        return config.model_copy(update={"delivery": delivery})

    # ------------------------------------------------------------------
    # Subscription helpers
    # ------------------------------------------------------------------
    def subscription_path(self, feed_id: str) -> Path:
        return self.locator.feeds_dir / f"{_slugify(feed_id)}{FEED_CONFIG_SUFFIX}"

    def list_subscription_files(self) -> Iterable[Path]:
        for path in sorted(self.locator.feeds_dir.glob("*")):
            if path.is_file() and path.suffix in CONFIG_EXTENSIONS:
                yield path

    def list_subscriptions(self) -> list[FeedSubscription]:
        return [self.load_subscription(path) for path in self.list_subscription_files()]

    def load_subscription(self, identifier: str | Path) -> FeedSubscription:
        path = identifier if isinstance(identifier, Path) else self.subscription_path(identifier)
        if not path.exists():
            raise FileNotFoundError(f"Feed configuration not found: {identifier}")
        return FeedSubscription.model_validate(_read_file(path))

    def save_subscription(self, subscription: FeedSubscription) -> Path:
        path = self.subscription_path(subscription.feed_id)
        _write_file(path, subscription.model_dump(mode="json", exclude_none=True))
        return path

    def delete_subscription(self, feed_id: str) -> bool:
        path = self.subscription_path(feed_id)
        if path.exists():
            path.unlink()
            return True
        return False


__all__ = ["ConfigLocator", "ConfigRepository", "CONFIG_EXTENSIONS"]
