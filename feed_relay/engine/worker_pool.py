"""Pool of long-lived worker processes that run fetch/parse jobs in isolation."""

from __future__ import annotations

import multiprocessing
from contextlib import contextmanager
from multiprocessing.connection import Connection
from threading import Condition
from time import monotonic
from typing import Any, Callable, Iterator

import structlog


class WorkerPoolError(RuntimeError):
    """Base class for worker pool failures."""


class WorkerJobError(WorkerPoolError):
    """The job raised inside the worker. The worker itself is still usable."""


class WorkerTimeout(WorkerPoolError):
    """The job did not answer within its timeout."""


class WorkerCrashed(WorkerPoolError):
    """The worker process exited or its pipe broke."""


class WorkerPoolExhausted(WorkerPoolError):
    """No worker became free before the acquire timeout."""


def _serve(conn: Connection) -> None:
    """Worker main loop: run ``(func, args, kwargs)`` jobs until told to stop."""

    while True:
        try:
            message = conn.recv()
        except (EOFError, OSError):
            break
        if message is None:
            break
        func, args, kwargs = message
        try:
            result = func(*args, **kwargs)
        except Exception as exc:  # noqa: BLE001
            conn.send((False, f"{type(exc).__name__}: {exc}"))
        else:
            conn.send((True, result))
    conn.close()


class WorkerProcess:
    """Handle on one worker process plus its availability flag."""

    def __init__(self, process: Any, conn: Any) -> None:
        self.process = process
        self.conn = conn
        self.locked = False

    @classmethod
    def spawn(cls, start_method: str | None = None) -> "WorkerProcess":
        context = multiprocessing.get_context(start_method)
        parent_conn, child_conn = context.Pipe()
        process = context.Process(target=_serve, args=(child_conn,), daemon=True)
        process.start()
        child_conn.close()
        return cls(process, parent_conn)

    @property
    def pid(self) -> int | None:
        return self.process.pid

    def is_alive(self) -> bool:
        return self.process.is_alive()

    def run(self, func: Callable[..., Any], *args: Any, timeout: float | None = None, **kwargs: Any) -> Any:
        """Execute ``func(*args, **kwargs)`` in the worker and return its result.

        ``func`` and its arguments must be picklable.
        """

        try:
            self.conn.send((func, args, kwargs))
            if not self.conn.poll(timeout):
                raise WorkerTimeout(f"Worker {self.pid} did not answer within {timeout}s")
            ok, payload = self.conn.recv()
        except (EOFError, BrokenPipeError, ConnectionResetError) as exc:
            raise WorkerCrashed(f"Worker {self.pid} is gone") from exc
        if not ok:
            raise WorkerJobError(payload)
        return payload

    def terminate(self, join_timeout: float = 5.0) -> None:
        try:
            self.conn.send(None)
        except (OSError, ValueError):
            pass
        self.process.terminate()
        self.process.join(join_timeout)
        self.conn.close()

    def __repr__(self) -> str:
        state = "locked" if self.locked else "free"
        return f"<WorkerProcess pid={self.pid} {state}>"


class WorkerPool:
    """Lend worker processes to callers and take them back.

    ``max_workers=None`` lets the pool grow without bound. With a cap, an
    ``acquire`` on a full pool waits for a release or kill.
    """

    def __init__(
        self,
        max_workers: int | None = None,
        spawner: Callable[[], WorkerProcess] | None = None,
        start_method: str | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if max_workers is not None and max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers
        self._spawner = spawner or (lambda: WorkerProcess.spawn(start_method))
        self._workers: list[WorkerProcess] = []
        self._available = Condition()
        self.logger = logger or structlog.get_logger("feed_relay.worker_pool")

    @property
    def workers(self) -> list[WorkerProcess]:
        with self._available:
            return list(self._workers)

    def acquire(self, timeout: float | None = None) -> WorkerProcess:
        deadline = None if timeout is None else monotonic() + timeout
        with self._available:
            while True:
                for worker in self._workers:
                    if not worker.locked:
                        worker.locked = True
                        return worker
                if self.max_workers is None or len(self._workers) < self.max_workers:
                    worker = self._spawner()
                    worker.locked = True
                    self._workers.append(worker)
                    self.logger.debug("worker_spawned", pid=worker.pid, total=len(self._workers))
                    return worker
                remaining = None if deadline is None else deadline - monotonic()
                if remaining is not None and remaining <= 0:
                    raise WorkerPoolExhausted(
                        f"All {self.max_workers} workers busy after {timeout}s"
                    )
                self._available.wait(remaining)

    def release(self, worker: WorkerProcess) -> None:
        with self._available:
            if not worker.locked:
                return
            worker.locked = False
            self._available.notify()

    def kill(self, worker: WorkerProcess) -> None:
        with self._available:
            worker.locked = False
            if worker in self._workers:
                self._workers.remove(worker)
            self._available.notify()
        worker.terminate()
        self.logger.info("worker_killed", pid=worker.pid)

    @contextmanager
    def lend(self, timeout: float | None = None) -> Iterator[WorkerProcess]:
        """Borrow a worker; broken or stuck workers are killed instead of returned."""

        worker = self.acquire(timeout)
        try:
            yield worker
        except (WorkerTimeout, WorkerCrashed):
            self.kill(worker)
            raise
        except BaseException:
            self.release(worker)
            raise
        else:
            self.release(worker)

    def shutdown(self) -> None:
        for worker in self.workers:
            self.kill(worker)

    def stats(self) -> dict[str, int]:
        with self._available:
            locked = sum(1 for worker in self._workers if worker.locked)
            return {"total": len(self._workers), "locked": locked, "free": len(self._workers) - locked}


__all__ = [
    "WorkerCrashed",
    "WorkerJobError",
    "WorkerPool",
    "WorkerPoolError",
    "WorkerPoolExhausted",
    "WorkerProcess",
    "WorkerTimeout",
]
