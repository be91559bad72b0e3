from __future__ import annotations

import asyncio
from collections import Counter

import httpx

from feed_relay.domain import Subscriber
from feed_relay.infra import PlatformAPIError
from feed_relay.maintenance import prune_subscribers


class MemoryStore:
    def __init__(self, subscribers: list[Subscriber]) -> None:
        self.subscribers = list(subscribers)
        self.deleted: list[str] = []

    def get_all(self) -> list[Subscriber]:
        return list(self.subscribers)

    def delete(self, subscriber: Subscriber) -> None:
        self.deleted.append(subscriber.id)
        self.subscribers.remove(subscriber)


class FakePlatform:
    def __init__(self, roles=None, user_errors=None) -> None:
        self.roles = roles or {}
        self.user_errors = user_errors or {}
        self.fetches: Counter[str] = Counter()
        self.in_flight = 0
        self.peak = 0

    def role_ids(self, guild_id: str):
        return self.roles.get(guild_id)

    async def fetch_user(self, user_id: str):
        self.fetches[user_id] += 1
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            error = self.user_errors.get(user_id)
            if error is not None:
                raise error
            return {"id": user_id}
        finally:
            self.in_flight -= 1


def _sub(sub_id: str, feed_id: str = "feed-1", type: str = "user", target: str = "u1") -> Subscriber:
    return Subscriber(id=sub_id, feed_id=feed_id, type=type, target_id=target)


def test_shared_user_fetched_once(sample_subscription) -> None:
    subscriptions = [sample_subscription(), sample_subscription(feed_id="feed-2")]
    store = MemoryStore([_sub("s1", "feed-1"), _sub("s2", "feed-2")])
    platform = FakePlatform()

    deleted = asyncio.run(prune_subscribers(store, subscriptions, platform))

    assert deleted == 0
    assert platform.fetches == Counter({"u1": 1})


def test_confirmed_absence_deletes_other_errors_retain(sample_subscription) -> None:
    store = MemoryStore(
        [
            _sub("gone", target="u-gone"),
            _sub("gone-too", target="u-gone"),
            _sub("limited", target="u-limited"),
            _sub("network", target="u-network"),
            _sub("fine", target="u-fine"),
        ]
    )
    platform = FakePlatform(
        user_errors={
            "u-gone": PlatformAPIError(404, 10013, "Unknown User"),
            "u-limited": PlatformAPIError(429, None, "rate limited"),
            "u-network": httpx.ConnectError("reset"),
        }
    )

    deleted = asyncio.run(prune_subscribers(store, [sample_subscription()], platform))

    assert deleted == 2
    assert sorted(store.deleted) == ["gone", "gone-too"]
    assert {s.id for s in store.subscribers} == {"limited", "network", "fine"}


def test_orphans_roles_and_invalid_types(sample_subscription) -> None:
    subscription = sample_subscription(guild_id="g1")
    store = MemoryStore(
        [
            _sub("orphan", feed_id="deleted-feed"),
            _sub("role-ok", type="role", target="r1"),
            _sub("role-gone", type="role", target="r9"),
            _sub("bogus", type="channel", target="c1"),
        ]
    )
    platform = FakePlatform(roles={"g1": {"r1"}})

    deleted = asyncio.run(prune_subscribers(store, [subscription], platform))

    assert deleted == 3
    assert sorted(store.deleted) == ["bogus", "orphan", "role-gone"]
    assert not platform.fetches


def test_role_retained_when_guild_not_cached(sample_subscription) -> None:
    store = MemoryStore([_sub("role", type="role", target="r1")])

    deleted = asyncio.run(prune_subscribers(store, [sample_subscription()], FakePlatform()))

    assert deleted == 0
    assert store.deleted == []


def test_user_checks_are_bounded(sample_subscription) -> None:
    store = MemoryStore([_sub(f"s{i}", target=f"u{i}") for i in range(12)])
    platform = FakePlatform()

    asyncio.run(prune_subscribers(store, [sample_subscription()], platform, max_concurrency=3))

    assert len(platform.fetches) == 12
    assert platform.peak <= 3
