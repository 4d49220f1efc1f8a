"""Bounded-concurrency task runner with start pacing."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Generic, List, Sequence, TypeVar

from .errors import ConfigError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TaskOutcome(Generic[T]):
    """Settled result of one task: either a value or the error it raised."""

    index: int
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConcurrencyLimiter:
    """Run tasks with at most ``max_concurrent`` in flight.

    Tasks are admitted in the order supplied. A task starts only when a slot
    is free and at least ``delay`` seconds have passed since the previous
    task started. Errors are captured per task and never cancel siblings.
    """

    def __init__(
        self,
        max_concurrent: int,
        delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_concurrent < 1:
            raise ConfigError("max_concurrent must be at least 1")
        if delay < 0:
            raise ConfigError("delay must be non-negative")
        self.max_concurrent = max_concurrent
        self.delay = delay
        self._sleep = sleep
        self._clock = clock
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._pacing_lock = threading.Lock()
        self._last_start: float | None = None

    def run(self, tasks: Sequence[Callable[[], T]]) -> List[TaskOutcome[T]]:
        if not tasks:
            return []

        futures: List[Future] = []
        workers = min(self.max_concurrent, len(tasks))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rentwatcher") as executor:
            for index, task in enumerate(tasks):
                self._slots.acquire()
                try:
                    self._wait_for_turn()
                    futures.append(executor.submit(self._execute, index, task))
                except BaseException:
                    self._slots.release()
                    raise
        return [future.result() for future in futures]

    def _wait_for_turn(self) -> None:
        with self._pacing_lock:
            now = self._clock()
            if self._last_start is not None and self.delay > 0:
                remaining = self._last_start + self.delay - now
                if remaining > 0:
                    self._sleep(remaining)
                    now = self._clock()
            self._last_start = now

    def _execute(self, index: int, task: Callable[[], T]) -> TaskOutcome[T]:
        try:
            return TaskOutcome(index=index, value=task())
        except Exception as exc:  # noqa: BLE001
            logger.debug("Task %d failed: %s", index, exc)
            return TaskOutcome(index=index, error=exc)
        finally:
            self._slots.release()


__all__ = ["ConcurrencyLimiter", "TaskOutcome"]
