from __future__ import annotations

import heapq
from collections.abc import Callable
from dataclasses import dataclass, field

from .clock import Clock, now_ms


@dataclass(order=True, slots=True)
class ScheduledTask:
    due_ms: float
    seq: int
    generation: int = field(compare=False)
    callback: Callable[[], None] = field(compare=False, repr=False)
    cancelled: bool = field(default=False, compare=False)


class Scheduler:
    """Cooperative timer queue for a single-threaded UI loop.

    Nothing runs on its own: the host calls ``run_due()`` once per frame and
    every task whose due time has passed is executed in due order. Tasks that
    share a due time run in the order they were scheduled.

    ``cancel_all()`` advances the generation. A task created under an older
    generation is dropped even if a reference to it survives somewhere.
    """

    def __init__(self, *, clock: Clock) -> None:
        self._clock = clock
        self._queue: list[ScheduledTask] = []
        self._seq = 0
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def pending_count(self) -> int:
        return sum(1 for task in self._queue if not task.cancelled)

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> ScheduledTask:
        task = ScheduledTask(
            due_ms=now_ms(self._clock) + max(0.0, float(delay_ms)),
            seq=self._seq,
            generation=self._generation,
            callback=callback,
        )
        self._seq += 1
        heapq.heappush(self._queue, task)
        return task

    def cancel(self, task: ScheduledTask | None) -> None:
        if task is not None:
            task.cancelled = True

    def cancel_all(self) -> None:
        for task in self._queue:
            task.cancelled = True
        self._queue.clear()
        self._generation += 1

    def run_due(self) -> int:
        """Run every task that is due now. Returns the number executed."""

        ran = 0
        now = now_ms(self._clock)
        while self._queue and self._queue[0].due_ms <= now:
            task = heapq.heappop(self._queue)
            if task.cancelled or task.generation != self._generation:
                continue
            task.callback()
            ran += 1
        return ran
