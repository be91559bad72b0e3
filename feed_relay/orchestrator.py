"""Cycle orchestrator wiring worker pool, dedup, delivery, history and maintenance."""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Iterable, Sequence

from .config import ConfigRepository, FeedSubscription, GlobalConfig
from .delivery import CoordinationBackendError, DeliveryClient, DeliveryError, DeliveryLockTimeout
from .domain import Article, Subscriber
from .engine import (
    DedupSettings,
    FeedBatch,
    FeedRequest,
    LinkDeduplicator,
    WorkerPool,
    WorkerPoolError,
    fetch_feed,
)
from .infra import DiscordAPI, HistoryRepository, SubscriberRepository
from .logging_conf import configure_logging, link_logger
from .maintenance import prune_subscribers

Formatter = Callable[[Article, FeedSubscription, Sequence[Subscriber]], dict[str, Any]]

MAX_CONTENT_LENGTH = 2000


def default_formatter(
    article: Article, subscription: FeedSubscription, subscribers: Sequence[Subscriber]
) -> dict[str, Any]:
    """Plain payload: bold title, link, then mentions."""

    lines: list[str] = []
    title = article.get("title")
    if isinstance(title, str) and title:
        lines.append(f"**{title}**")
    link = article.get("link")
    if isinstance(link, str) and link:
        lines.append(link)
    mentions = " ".join(s.mention for s in subscribers if s.mention_type is not None)
    if mentions:
        lines.append(mentions)
    content = "\n".join(lines) or (article.id or "")
    return {"content": content[:MAX_CONTENT_LENGTH]}


@dataclass(slots=True)
class LinkOutcome:
    link: str
    status: str
    fetched: int = 0
    new: int = 0
    delivered: int = 0
    delivery_failed: int = 0
    error: str | None = None


@dataclass(slots=True)
class CycleSummary:
    links: int = 0
    succeeded: int = 0
    failed: int = 0
    not_modified: int = 0
    delivered: int = 0
    delivery_failed: int = 0
    skipped: bool = False
    outcomes: list[LinkOutcome] = field(default_factory=list)

    def record(self, outcome: LinkOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == "success":
            self.succeeded += 1
        elif outcome.status == "not_modified":
            self.not_modified += 1
        else:
            self.failed += 1
        self.delivered += outcome.delivered
        self.delivery_failed += outcome.delivery_failed

    def as_dict(self) -> dict[str, int | bool]:
        return {
            "links": self.links,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "not_modified": self.not_modified,
            "delivered": self.delivered,
            "delivery_failed": self.delivery_failed,
            "skipped": self.skipped,
        }


class Orchestrator:
    """Central coordinator running feed cycles and the subscriber job."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        scheduler,
        worker_pool: WorkerPool,
        history: HistoryRepository,
        subscribers: SubscriberRepository,
        delivery: DeliveryClient,
        formatter: Formatter = default_formatter,
        fetch_job: Callable[[FeedRequest], FeedBatch] = fetch_feed,
        discord_factory: Callable[[], DiscordAPI] | None = None,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.scheduler = scheduler
        self.worker_pool = worker_pool
        self.history = history
        self.subscribers = subscribers
        self.delivery = delivery
        self.formatter = formatter
        self.fetch_job = fetch_job
        self.discord_factory = discord_factory or (
            lambda: DiscordAPI.from_config(self.global_config.delivery)
        )
        self.settings = DedupSettings(
            check_dates=self.global_config.feeds.check_dates,
            max_age_days=self.global_config.feeds.cycle_max_age,
        )
        self.logger = configure_logging().bind(component="orchestrator")
        self._headers: dict[str, tuple[str | None, str | None]] = {}
        self._headers_lock = Lock()
        self._cycle_lock = Lock()

    # ------------------------------------------------------------------
    def register_schedules(self) -> None:
        self.scheduler.schedule_cycle(self.global_config.refresh_schedule, self.run_cycle)
        self.scheduler.schedule_consistency(
            self.global_config.consistency.schedule, self.prune_subscribers
        )
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.shutdown()
        self.worker_pool.shutdown()
        self.delivery.close()

    # ------------------------------------------------------------------
    @staticmethod
    def group_by_link(subscriptions: Iterable[FeedSubscription]) -> dict[str, list[FeedSubscription]]:
        grouped: dict[str, list[FeedSubscription]] = {}
        for subscription in subscriptions:
            if subscription.disabled:
                continue
            grouped.setdefault(subscription.link, []).append(subscription)
        return grouped

    def run_cycle(self, links: Iterable[str] | None = None) -> CycleSummary:
        """Fetch every link once, deliver what is new, record what was seen."""

        if not self._cycle_lock.acquire(blocking=False):
            self.logger.warning("cycle_skipped_in_progress")
            return CycleSummary(skipped=True)
        try:
            return self._run_cycle(links)
        finally:
            self._cycle_lock.release()

    def _run_cycle(self, links: Iterable[str] | None) -> CycleSummary:
        grouped = self.group_by_link(self.config_repository.list_subscriptions())
        if links is not None:
            wanted = set(links)
            grouped = {link: feeds for link, feeds in grouped.items() if link in wanted}
        summary = CycleSummary(links=len(grouped))
        if not grouped:
            self.logger.info("cycle_finished", **summary.as_dict())
            return summary

        subscribers_by_feed: dict[str, list[Subscriber]] = {}
        for subscriber in self.subscribers.get_all():
            subscribers_by_feed.setdefault(subscriber.feed_id, []).append(subscriber)

        self.logger.info("cycle_started", links=len(grouped), pool=self.worker_pool.stats())
        with ThreadPoolExecutor(
            max_workers=self.global_config.thread_pool_workers, thread_name_prefix="relay-cycle"
        ) as executor:
            futures = {
                executor.submit(self.process_link, link, feeds, subscribers_by_feed): link
                for link, feeds in grouped.items()
            }
            for future in as_completed(futures):
                link = futures[future]
                try:
                    outcome = future.result()
                except CoordinationBackendError:
                    self.logger.error("cycle_aborted_coordination_backend", link=link)
                    for pending in futures:
                        pending.cancel()
                    raise
                except Exception as exc:  # noqa: BLE001
                    self.logger.exception("link_processing_error", link=link)
                    outcome = LinkOutcome(link=link, status="failed", error=str(exc))
                summary.record(outcome)

        self.logger.info("cycle_finished", **summary.as_dict())
        return summary

    def process_link(
        self,
        link: str,
        subscriptions: Sequence[FeedSubscription],
        subscribers_by_feed: dict[str, list[Subscriber]] | None = None,
    ) -> LinkOutcome:
        log = link_logger(link)
        try:
            batch = self._fetch(link)
        except WorkerPoolError as exc:
            log.warning("link_fetch_failed", error=str(exc))
            return LinkOutcome(link=link, status="failed", error=str(exc))

        self._remember_headers(link, batch)
        if batch.not_modified:
            log.debug("link_not_modified")
            return LinkOutcome(link=link, status="not_modified")

        by_id = {subscription.feed_id: subscription for subscription in subscriptions}
        result = LinkDeduplicator(
            link=link,
            history=self.history.load(link),
            subscriptions=by_id,
            settings=self.settings,
            debug_feeds=self.global_config.debug_feeds,
            logger=log,
        ).run(batch.articles)

        outcome = LinkOutcome(
            link=link,
            status="success",
            fetched=len(batch.articles),
            new=len(result.new_articles),
        )
        subscribers_by_feed = subscribers_by_feed or {}
        for item in result.new_articles:
            subscription = by_id[item.subscription_id]
            if self.deliver(item.article, subscription, subscribers_by_feed.get(subscription.feed_id, ())):
                outcome.delivered += 1
            else:
                outcome.delivery_failed += 1

        properties = {name for subscription in subscriptions for name in subscription.comparison_properties}
        stored = self.history.store(link, batch.articles, properties)
        log.info(
            "link_processed",
            fetched=outcome.fetched,
            new=outcome.new,
            delivered=outcome.delivered,
            delivery_failed=outcome.delivery_failed,
            stored=stored,
            id_type=batch.id_type,
        )
        return outcome

    def _fetch(self, link: str) -> FeedBatch:
        pool_config = self.global_config.worker_pool
        with self._headers_lock:
            etag, last_modified = self._headers.get(link, (None, None))
        request = FeedRequest(
            url=link,
            etag=etag,
            last_modified=last_modified,
            timeout=self.global_config.delivery.request_timeout,
        )
        with self.worker_pool.lend(timeout=pool_config.acquire_timeout) as worker:
            return worker.run(self.fetch_job, request, timeout=pool_config.job_timeout)

    def _remember_headers(self, link: str, batch: FeedBatch) -> None:
        if not (batch.etag or batch.last_modified):
            return
        with self._headers_lock:
            self._headers[link] = (batch.etag, batch.last_modified)

    def deliver(
        self,
        article: Article,
        subscription: FeedSubscription,
        subscribers: Sequence[Subscriber] = (),
    ) -> bool:
        payload = self.formatter(article, subscription, subscribers)
        try:
            if subscription.webhook is not None:
                self.delivery.send_webhook_message(subscription.webhook, payload)
            else:
                self.delivery.send_channel_message(subscription.channel_id, payload)
        except (DeliveryError, DeliveryLockTimeout) as exc:
            self.logger.warning(
                "article_delivery_failed",
                feed_id=subscription.feed_id,
                article_id=article.id,
                error=str(exc),
                status=getattr(exc, "status_code", None),
            )
            return False
        return True

    # ------------------------------------------------------------------
    def prune_subscribers(self) -> int:
        subscriptions = self.config_repository.list_subscriptions()
        return asyncio.run(self._prune_subscribers(subscriptions))

    async def _prune_subscribers(self, subscriptions: list[FeedSubscription]) -> int:
        api = self.discord_factory()
        try:
            await api.warm_role_cache({subscription.guild_id for subscription in subscriptions})
            return await prune_subscribers(
                self.subscribers,
                subscriptions,
                api,
                max_concurrency=self.global_config.consistency.max_concurrency,
                logger=self.logger.bind(job="prune_subscribers"),
            )
        finally:
            await api.aclose()

    # ------------------------------------------------------------------
    def view_history(self, feed_id: str, limit: int = 20) -> list[tuple[str, str]]:
        subscription = self.config_repository.load_subscription(feed_id)
        return self.history.recent(subscription.link, limit=limit)

    def reset_history(self, feed_id: str) -> int:
        subscription = self.config_repository.load_subscription(feed_id)
        removed = self.history.reset(subscription.link)
        self.logger.info("history_reset", feed_id=feed_id, link=subscription.link, removed=removed)
        return removed


__all__ = ["CycleSummary", "LinkOutcome", "Orchestrator", "default_formatter"]
