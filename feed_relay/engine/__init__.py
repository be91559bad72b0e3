"""Engine components: fetch/parse jobs, worker processes and deduplication."""

from .dedup import DedupResult, DedupSettings, LinkDeduplicator, find_new_articles
from .fetch_job import FeedBatch, FeedFetchError, FeedParseError, FeedRequest, fetch_feed
from .references import build_comparison_references, history_ids
from .worker_pool import (
    WorkerCrashed,
    WorkerJobError,
    WorkerPool,
    WorkerPoolError,
    WorkerPoolExhausted,
    WorkerProcess,
    WorkerTimeout,
)

__all__ = [
    "DedupResult",
    "DedupSettings",
    "FeedBatch",
    "FeedFetchError",
    "FeedParseError",
    "FeedRequest",
    "LinkDeduplicator",
    "WorkerCrashed",
    "WorkerJobError",
    "WorkerPool",
    "WorkerPoolError",
    "WorkerPoolExhausted",
    "WorkerProcess",
    "WorkerTimeout",
    "build_comparison_references",
    "fetch_feed",
    "find_new_articles",
    "history_ids",
]
