"""Subscriber consistency job: prune mention records that no longer resolve."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Iterable, Protocol

import httpx
import structlog

from ..config import FeedSubscription
from ..domain import MentionType, Subscriber
from ..infra.discord_api import PlatformAPIError


class SubscriberStore(Protocol):
    def get_all(self) -> list[Subscriber]: ...

    def delete(self, subscriber: Subscriber) -> None: ...


class MentionPlatform(Protocol):
    def role_ids(self, guild_id: str) -> set[str] | None: ...

    async def fetch_user(self, user_id: str) -> Any: ...


class Presence(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


async def _check_users(
    platform: MentionPlatform,
    user_ids: Iterable[str],
    max_concurrency: int,
    logger: Any,
) -> dict[str, Presence]:
    semaphore = asyncio.Semaphore(max_concurrency)

    async def check(user_id: str) -> Presence:
        async with semaphore:
            try:
                await platform.fetch_user(user_id)
            except PlatformAPIError as exc:
                if exc.confirms_absence:
                    return Presence.ABSENT
                logger.warning(
                    "subscriber_user_check_inconclusive",
                    user_id=user_id,
                    status=exc.status_code,
                    code=exc.code,
                )
                return Presence.UNKNOWN
            except httpx.HTTPError as exc:
                logger.warning("subscriber_user_check_failed", user_id=user_id, error=str(exc))
                return Presence.UNKNOWN
            return Presence.PRESENT

    unique = sorted(set(user_ids))
    outcomes = await asyncio.gather(*(check(user_id) for user_id in unique))
    return dict(zip(unique, outcomes))


async def prune_subscribers(
    store: SubscriberStore,
    subscriptions: Iterable[FeedSubscription],
    platform: MentionPlatform,
    *,
    max_concurrency: int = 10,
    logger: Any = None,
) -> int:
    """Delete subscribers whose subscription, role or user no longer exists.

    Users are checked once per unique id. Only responses that confirm the
    user is gone lead to deletion; any other failure keeps the record.
    Returns the number of deleted subscribers.
    """

    logger = logger or structlog.get_logger("feed_relay.maintenance").bind(job="prune_subscribers")
    feeds = {subscription.feed_id: subscription for subscription in subscriptions}
    doomed: list[Subscriber] = []
    users: dict[str, list[Subscriber]] = {}

    for subscriber in store.get_all():
        feed = feeds.get(subscriber.feed_id)
        if feed is None:
            logger.info("subscriber_orphaned", subscriber_id=subscriber.id, feed_id=subscriber.feed_id)
            doomed.append(subscriber)
            continue
        mention_type = subscriber.mention_type
        if mention_type is MentionType.ROLE:
            roles = platform.role_ids(feed.guild_id)
            if roles is None:
                logger.warning("subscriber_role_guild_uncached", guild_id=feed.guild_id)
            elif subscriber.target_id not in roles:
                logger.info("subscriber_role_missing", subscriber_id=subscriber.id, role_id=subscriber.target_id)
                doomed.append(subscriber)
        elif mention_type is MentionType.USER:
            users.setdefault(subscriber.target_id, []).append(subscriber)
        else:
            logger.info("subscriber_invalid_type", subscriber_id=subscriber.id, type=subscriber.type)
            doomed.append(subscriber)

    presence = await _check_users(platform, users, max_concurrency, logger)
    for user_id, outcome in presence.items():
        if outcome is Presence.ABSENT:
            logger.info("subscriber_user_missing", user_id=user_id, subscribers=len(users[user_id]))
            doomed.extend(users[user_id])

    await asyncio.gather(*(asyncio.to_thread(store.delete, subscriber) for subscriber in doomed))
    logger.info("subscribers_pruned", deleted=len(doomed), users_checked=len(presence))
    return len(doomed)


__all__ = ["MentionPlatform", "Presence", "SubscriberStore", "prune_subscribers"]
