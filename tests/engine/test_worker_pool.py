from __future__ import annotations

import itertools
import operator
import threading
import time
from unittest.mock import MagicMock

import pytest

from feed_relay.engine import (
    WorkerCrashed,
    WorkerJobError,
    WorkerPool,
    WorkerPoolExhausted,
    WorkerProcess,
    WorkerTimeout,
)


@pytest.fixture
def fake_spawner():
    pids = itertools.count(1000)
    spawned: list[WorkerProcess] = []

    def _spawn() -> WorkerProcess:
        worker = WorkerProcess(MagicMock(pid=next(pids)), MagicMock())
        spawned.append(worker)
        return worker

    _spawn.spawned = spawned  # type: ignore[attr-defined]
    return _spawn


def test_acquire_twice_yields_two_locked_workers(fake_spawner) -> None:
    pool = WorkerPool(spawner=fake_spawner)

    first = pool.acquire()
    second = pool.acquire()

    assert first is not second
    assert first.locked and second.locked
    assert pool.stats() == {"total": 2, "locked": 2, "free": 0}


def test_release_then_acquire_reuses_worker(fake_spawner) -> None:
    pool = WorkerPool(spawner=fake_spawner)
    first = pool.acquire()
    pool.acquire()

    pool.release(first)
    again = pool.acquire()

    assert again is first
    assert len(fake_spawner.spawned) == 2


def test_release_on_free_worker_is_noop(fake_spawner) -> None:
    pool = WorkerPool(spawner=fake_spawner)
    worker = pool.acquire()
    pool.release(worker)
    pool.release(worker)

    assert pool.stats() == {"total": 1, "locked": 0, "free": 1}


def test_kill_terminates_and_removes(fake_spawner) -> None:
    pool = WorkerPool(spawner=fake_spawner)
    worker = pool.acquire()

    pool.kill(worker)

    assert worker.locked is False
    assert pool.workers == []
    worker.process.terminate.assert_called_once()
    worker.conn.close.assert_called_once()


def test_spawn_failure_propagates() -> None:
    def broken_spawner() -> WorkerProcess:
        raise OSError("fork failed")

    pool = WorkerPool(spawner=broken_spawner)

    with pytest.raises(OSError):
        pool.acquire()
    assert pool.workers == []


def test_capped_pool_times_out(fake_spawner) -> None:
    pool = WorkerPool(max_workers=1, spawner=fake_spawner)
    pool.acquire()

    with pytest.raises(WorkerPoolExhausted):
        pool.acquire(timeout=0.05)


def test_capped_pool_waits_for_release(fake_spawner) -> None:
    pool = WorkerPool(max_workers=1, spawner=fake_spawner)
    worker = pool.acquire()
    timer = threading.Timer(0.05, pool.release, args=(worker,))
    timer.start()

    again = pool.acquire(timeout=2)

    timer.join()
    assert again is worker


def test_invalid_cap_rejected() -> None:
    with pytest.raises(ValueError):
        WorkerPool(max_workers=0)


def test_lend_releases_on_job_error_and_kills_on_timeout(fake_spawner) -> None:
    pool = WorkerPool(spawner=fake_spawner)

    with pytest.raises(WorkerJobError):
        with pool.lend() as worker:
            raise WorkerJobError("ValueError: bad feed")
    assert pool.stats() == {"total": 1, "locked": 0, "free": 1}

    with pytest.raises(WorkerTimeout):
        with pool.lend() as worker:
            raise WorkerTimeout("stuck")
    assert pool.workers == []
    worker.process.terminate.assert_called_once()


def test_run_maps_broken_pipe_to_crash() -> None:
    conn = MagicMock()
    conn.send.side_effect = BrokenPipeError()
    worker = WorkerProcess(MagicMock(pid=1), conn)

    with pytest.raises(WorkerCrashed):
        worker.run(operator.add, 1, 2)


def test_real_worker_process_runs_jobs() -> None:
    pool = WorkerPool()
    try:
        with pool.lend() as worker:
            assert worker.run(operator.add, 2, 3, timeout=10) == 5
            with pytest.raises(WorkerJobError, match="ZeroDivisionError"):
                worker.run(operator.truediv, 1, 0, timeout=10)
            assert worker.run(operator.mul, 4, 5, timeout=10) == 20

        with pytest.raises(WorkerTimeout):
            with pool.lend() as worker:
                worker.run(time.sleep, 5, timeout=0.2)
        assert pool.workers == []
    finally:
        pool.shutdown()
