"""feed-relay: shared feed fetching, per-subscription dedup and coordinated delivery."""

__version__ = "0.1.0"
