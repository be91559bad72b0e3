"""Scheduling adapters."""

from .apsched_adapter import CONSISTENCY_JOB_ID, CYCLE_JOB_ID, APSchedulerAdapter

__all__ = ["APSchedulerAdapter", "CONSISTENCY_JOB_ID", "CYCLE_JOB_ID"]
