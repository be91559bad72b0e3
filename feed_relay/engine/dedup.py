"""Per-subscription novelty decisions for one fetched feed link."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Sequence

import structlog

from ..config import FeedSubscription
from ..domain import Article, ComparisonDoc, NewArticle
from .references import ComparisonReferences, build_comparison_references, history_ids

# subscription id -> property -> values accepted earlier in this run
SentReferences = dict[str, dict[str, set[str]]]


@dataclass(slots=True, frozen=True)
class DedupSettings:
    """Global fallbacks applied when a subscription leaves them unset."""

    check_dates: bool = True
    max_age_days: int = 1

    def should_check_dates(self, subscription: FeedSubscription) -> bool:
        if subscription.check_dates is None:
            return self.check_dates
        return subscription.check_dates

    def cutoff(self, subscription: FeedSubscription, now: datetime) -> datetime:
        max_age = subscription.article_max_age
        if max_age is None:
            max_age = self.max_age_days
        return now - timedelta(days=max_age)


@dataclass(slots=True)
class DedupResult:
    link: str
    new_articles: list[NewArticle] = field(default_factory=list)

    def by_subscription(self) -> dict[str, list[Article]]:
        grouped: dict[str, list[Article]] = {}
        for item in self.new_articles:
            grouped.setdefault(item.subscription_id, []).append(item.article)
        return grouped


def _comparable(value: Any) -> bool:
    return bool(value) and isinstance(value, str)


def negative_comparison_blocks(
    article: Article,
    comparisons: Sequence[str],
    references: ComparisonReferences,
    sent: Mapping[str, set[str]] | None,
) -> bool:
    """Return True when an unseen article repeats a value already recorded."""

    for name in comparisons:
        value = article.get(name)
        if not _comparable(value):
            continue
        if value in references.get(name, ()):
            return True
        if sent and value in sent.get(name, ()):
            return True
    return False


def positive_comparison_passes(
    article: Article,
    comparisons: Sequence[str],
    references: ComparisonReferences,
    sent: Mapping[str, set[str]] | None,
) -> bool:
    """Return True when a seen article carries a value never recorded before.

    Properties without any recorded history never pass, otherwise enabling a
    new comparison would resend the whole feed.
    """

    for name in comparisons:
        value = article.get(name)
        if not _comparable(value):
            continue
        recorded = references.get(name)
        if not recorded:
            continue
        if value in recorded:
            continue
        if sent and value in sent.get(name, ()):
            continue
        return True
    return False


@dataclass
class LinkDeduplicator:
    """Decide which articles of one batch are new for each subscription.

    A deduplicator is built for a single run of a single link. Its
    ``sent_references`` buffer lives only as long as the instance.
    """

    link: str
    history: Sequence[ComparisonDoc]
    subscriptions: Mapping[str, FeedSubscription]
    settings: DedupSettings = field(default_factory=DedupSettings)
    now: datetime | None = None
    debug_feeds: Iterable[str] = ()
    logger: Any = None

    def __post_init__(self) -> None:
        self.now = _utc(self.now or datetime.now(timezone.utc))
        self.debug_feeds = set(self.debug_feeds)
        self.logger = self.logger or structlog.get_logger("feed_relay.dedup").bind(link=self.link)
        self.sent_references: SentReferences = {}
        self._history_ids = history_ids(self.history)
        self._references = build_comparison_references(self.history)

    def run(self, articles: Sequence[Article]) -> DedupResult:
        result = DedupResult(link=self.link)
        if not self._history_ids:
            # History not initialised for this link yet: store only.
            self.logger.info("dedup_uninitialised_link", articles=len(articles))
            return result
        for subscription_id, subscription in self.subscriptions.items():
            result.new_articles.extend(
                self._new_articles_of(subscription_id, subscription, articles)
            )
        return result

    def _new_articles_of(
        self,
        subscription_id: str,
        subscription: FeedSubscription,
        articles: Sequence[Article],
    ) -> list[NewArticle]:
        self._debug(
            subscription_id,
            "dedup_subscription_start",
            articles=len(articles),
            history_ids=len(self._history_ids),
        )
        found: list[NewArticle] = []
        # Batches arrive newest first; deliver oldest first.
        for article in reversed(articles):
            if self.is_new_article(subscription_id, subscription, article):
                found.append(NewArticle(article=article, subscription_id=subscription_id))
        return found

    def is_new_article(
        self, subscription_id: str, subscription: FeedSubscription, article: Article
    ) -> bool:
        sent = self.sent_references.get(subscription_id)
        if not article.id:
            self._debug(subscription_id, "article_blocked_no_id")
            return False
        if article.id not in self._history_ids:
            if negative_comparison_blocks(
                article, subscription.negative_comparisons, self._references, sent
            ):
                self._debug(
                    subscription_id,
                    "article_blocked_negative_comparison",
                    article_id=article.id,
                    comparisons=subscription.negative_comparisons,
                )
                return False
        elif not positive_comparison_passes(
            article, subscription.positive_comparisons, self._references, sent
        ):
            self._debug(
                subscription_id,
                "article_blocked_seen",
                article_id=article.id,
                comparisons=subscription.positive_comparisons,
            )
            return False

        if self.settings.should_check_dates(subscription):
            cutoff = self.settings.cutoff(subscription, self.now)
            published = _utc(article.published_at) if article.published_at else None
            if published is None or published < cutoff:
                self._debug(
                    subscription_id,
                    "article_blocked_age",
                    article_id=article.id,
                    published_at=published.isoformat() if published else None,
                    cutoff=cutoff.isoformat(),
                )
                return False

        self._debug(subscription_id, "article_new", article_id=article.id)
        self._buffer(subscription_id, subscription, article)
        return True

    def _buffer(self, subscription_id: str, subscription: FeedSubscription, article: Article) -> None:
        sent = self.sent_references.setdefault(subscription_id, {})
        for name in subscription.comparison_properties:
            value = article.get(name)
            if not _comparable(value):
                continue
            sent.setdefault(name, set()).add(value)

    def _debug(self, subscription_id: str, event: str, **fields: Any) -> None:
        if subscription_id in self.debug_feeds:
            self.logger.info(event, feed_id=subscription_id, **fields)
        else:
            self.logger.debug(event, feed_id=subscription_id, **fields)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def find_new_articles(
    history: Sequence[ComparisonDoc],
    subscriptions: Mapping[str, FeedSubscription],
    articles: Sequence[Article],
    *,
    link: str = "",
    settings: DedupSettings | None = None,
    now: datetime | None = None,
    debug_feeds: Iterable[str] = (),
) -> DedupResult:
    """Run a fresh deduplicator over one batch and return its result."""

    deduplicator = LinkDeduplicator(
        link=link,
        history=history,
        subscriptions=subscriptions,
        settings=settings or DedupSettings(),
        now=now,
        debug_feeds=debug_feeds,
    )
    return deduplicator.run(articles)


__all__ = [
    "DedupResult",
    "DedupSettings",
    "LinkDeduplicator",
    "find_new_articles",
    "negative_comparison_blocks",
    "positive_comparison_passes",
]
