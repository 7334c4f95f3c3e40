"""Drive an asynchronous server task to a terminal state.

Polling starts with a short burst at a fixed delay, so quick tasks finish
without waiting, then backs off geometrically up to a ceiling. The whole
wait is bounded by a wall-clock budget.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from .constants import (
    BURST_POLLS,
    INITIAL_POLL_DELAY_S,
    MAX_POLL_DELAY_S,
    POLL_BACKOFF_FACTOR,
    POLL_TIMEOUT_S,
)
from .errors import TaskFailed, TaskTimeout
from .history import TaskHistory
from .models import UNKNOWN_TASK_ERROR, Task, TaskStatus


log = logging.getLogger(__name__)

ProgressSink = Callable[[Task], None]


@dataclass(frozen=True, slots=True)
class PollTiming:
    initial_delay: float = INITIAL_POLL_DELAY_S
    max_delay: float = MAX_POLL_DELAY_S
    timeout: float = POLL_TIMEOUT_S
    burst_polls: int = BURST_POLLS
    backoff_factor: float = POLL_BACKOFF_FACTOR

    @classmethod
    def from_config(cls, config: Any) -> PollTiming:
        return cls(initial_delay=config.poll_interval, timeout=config.poll_timeout)

    def delays(self) -> Iterator[float]:
        delay = min(self.initial_delay, self.max_delay)
        sleeps = 0
        while True:
            yield delay
            sleeps += 1
            if sleeps >= self.burst_polls:
                delay = min(delay * self.backoff_factor, self.max_delay)


def _update_history(history: TaskHistory, task: Task) -> None:
    error = task.error.message if task.error else None
    try:
        history.update_status(task.task_id, task.status, error=error)
    except OSError as exc:
        log.warning("Could not update task history for %s: %s", task.task_id, exc)


def poll_until_done(
    task_id: str,
    fetch_status: Callable[[str], Task],
    timing: PollTiming | None = None,
    on_progress: ProgressSink | None = None,
    *,
    history: TaskHistory | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Task:
    """Query ``task_id`` until it completes.

    Returns the completed snapshot. Raises ``TaskFailed`` when the server
    reports failure and ``TaskTimeout`` once the budget in ``timing`` is
    spent. ``on_progress`` only ever sees non-terminal snapshots. Errors
    raised by ``fetch_status`` propagate unchanged.
    """
    timing = timing or PollTiming()
    started = clock()
    deadline = started + timing.timeout
    delays = timing.delays()
    current: Task | None = None
    polls = 0

    while True:
        snapshot = fetch_status(task_id)
        polls += 1
        current = snapshot if current is None else current.advance(snapshot)
        log.debug("Task %s poll %d: %s %.0f%%", task_id, polls, current.status.value, current.progress * 100)
        if history is not None:
            _update_history(history, current)

        if current.status is TaskStatus.COMPLETED:
            return current
        if current.status is TaskStatus.FAILED:
            error = current.error or UNKNOWN_TASK_ERROR
            raise TaskFailed(task_id, error.message, error_code=error.code)

        if on_progress is not None:
            on_progress(current)

        remaining = deadline - clock()
        if remaining <= 0:
            raise TaskTimeout(task_id, clock() - started)
        sleep(min(next(delays), remaining))


__all__ = ["PollTiming", "ProgressSink", "poll_until_done"]
