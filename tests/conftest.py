"""Shared fixtures for feed-relay tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from feed_relay.config import ConfigLocator, ConfigRepository, FeedSubscription, GlobalConfig
from feed_relay.domain import Article, ComparisonDoc

NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def relay_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("FEED_RELAY_HOME", str(tmp_path))
    monkeypatch.delenv("FEED_RELAY_REDIS_URL", raising=False)
    monkeypatch.delenv("FEED_RELAY_BOT_TOKEN", raising=False)
    return tmp_path


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def sample_global_config(tmp_path: Path) -> GlobalConfig:
    return GlobalConfig(history_path=tmp_path / "history" / "articles.db")


@pytest.fixture
def sample_subscription() -> Callable[..., FeedSubscription]:
    def _builder(**overrides: Any) -> FeedSubscription:
        base: dict[str, Any] = {
            "feed_id": "feed-1",
            "link": "https://example.com/rss",
            "guild_id": "100",
            "channel_id": "200",
        }
        base.update(overrides)
        return FeedSubscription(**base)

    return _builder


@pytest.fixture
def make_article() -> Callable[..., Article]:
    def _builder(article_id: str | None, age_hours: float = 1, **properties: Any) -> Article:
        published = NOW - timedelta(hours=age_hours) if age_hours is not None else None
        return Article(id=article_id, published_at=published, properties=properties)

    return _builder


@pytest.fixture
def make_history() -> Callable[..., list[ComparisonDoc]]:
    def _builder(*entries: str | tuple[str, dict[str, Any]]) -> list[ComparisonDoc]:
        docs = []
        for entry in entries:
            if isinstance(entry, tuple):
                docs.append(ComparisonDoc(entry[0], dict(entry[1])))
            else:
                docs.append(ComparisonDoc(entry))
        return docs

    return _builder


@pytest.fixture
def temp_config_repository(tmp_path: Path) -> Iterable[ConfigRepository]:
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository
