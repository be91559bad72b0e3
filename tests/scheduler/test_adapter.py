from __future__ import annotations

from datetime import datetime, timedelta

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from feed_relay.config import ScheduleConfig, ScheduleType
from feed_relay.scheduler import CONSISTENCY_JOB_ID, CYCLE_JOB_ID, APSchedulerAdapter


class StubScheduler:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def add_job(self, callback, trigger, id, replace_existing, max_instances, coalesce):  # noqa: ANN001
        self.calls.append(
            {
                "id": id,
                "callback": callback,
                "trigger": trigger,
                "replace_existing": replace_existing,
                "max_instances": max_instances,
                "coalesce": coalesce,
            }
        )

    def get_jobs(self):
        return []

    def start(self):
        self.calls.append({"event": "started"})

    def shutdown(self, wait=False):  # noqa: ARG002
        self.calls.append({"event": "shutdown"})

    def remove_job(self, job_id):  # noqa: ANN001
        raise LookupError(job_id)


def test_build_triggers() -> None:
    adapter = APSchedulerAdapter()

    cron_trigger = adapter._build_trigger(ScheduleConfig(type=ScheduleType.CRON, value="*/5 * * * *"))
    assert isinstance(cron_trigger, CronTrigger)

    interval_trigger = adapter._build_trigger(ScheduleConfig(type=ScheduleType.INTERVAL, value=30))
    assert isinstance(interval_trigger, IntervalTrigger)
    assert interval_trigger.interval.total_seconds() == 30

    kwargs_trigger = adapter._build_trigger(ScheduleConfig(type=ScheduleType.INTERVAL, value={"minutes": 2}))
    assert kwargs_trigger.interval.total_seconds() == 120

    future = (datetime.now() + timedelta(minutes=5)).isoformat()
    once_trigger = adapter._build_trigger(ScheduleConfig(type=ScheduleType.ONCE, value=future))
    assert isinstance(once_trigger, DateTrigger)


def test_cycle_and_consistency_jobs_do_not_overlap() -> None:
    adapter = APSchedulerAdapter()
    stub = StubScheduler()
    adapter.scheduler = stub

    def cycle() -> None:
        return None

    def prune() -> int:
        return 0

    adapter.schedule_cycle(ScheduleConfig(type=ScheduleType.INTERVAL, value=600), cycle)
    adapter.schedule_consistency(ScheduleConfig(type=ScheduleType.CRON, value="0 */6 * * *"), prune)
    adapter.start()
    adapter.start()
    adapter.remove_job("missing")
    adapter.shutdown()

    jobs = [call for call in stub.calls if "id" in call]
    assert [job["id"] for job in jobs] == [CYCLE_JOB_ID, CONSISTENCY_JOB_ID]
    assert [job["callback"] for job in jobs] == [cycle, prune]
    assert all(job["max_instances"] == 1 and job["coalesce"] for job in jobs)
    assert [call["event"] for call in stub.calls if "event" in call] == ["started", "shutdown"]
