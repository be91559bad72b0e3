"""Periodic maintenance jobs."""

from .subscribers import prune_subscribers

__all__ = ["prune_subscribers"]
