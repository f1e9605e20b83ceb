"""Absolute-deadline countdown for the active question."""

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class ActiveQuestionContext:
    """Everything the background tasks of one open question share."""

    question_index: int
    started_at: float
    time_limit: int
    cancel_token: threading.Event = field(default_factory=threading.Event)

    @property
    def deadline(self) -> float:
        return self.started_at + self.time_limit

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.is_set()

    def remaining(self, now: float) -> float:
        return max(0.0, self.deadline - now)


class DeadlineTimer:
    """Fires ``on_expire(question_index)`` exactly once when ``now >= deadline``.

    Remaining time is always derived from the absolute deadline, so a timer
    rebuilt after a restart reports the same value as one that never stopped.
    ``poll`` does the work; ``start`` only runs ``poll`` on a background task.
    """

    def __init__(
        self,
        context: ActiveQuestionContext,
        on_expire: Callable[[int], None],
        clock: Callable[[], float] = time.time,
        tick: float = 0.25,
        heartbeat: int = 0,
        logger=None,
        not_before: float = 0.0,
    ):
        self.context = context
        self.on_expire = on_expire
        self.clock = clock
        self.tick = tick
        self.heartbeat = heartbeat
        self.logger = logger
        # Earliest firing time for a retried close
        self.not_before = not_before
        self._fired = False
        self._lock = threading.Lock()
        self._last_remaining: Optional[float] = None

    @property
    def question_index(self) -> int:
        return self.context.question_index

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def fires_at(self) -> float:
        return max(self.context.deadline, self.not_before)

    def remaining(self, now: Optional[float] = None) -> float:
        """Seconds left; never increases across calls, even if the clock steps back."""
        if self._fired or self.context.cancelled:
            return 0.0
        value = self.context.remaining(self.clock() if now is None else now)
        if self._last_remaining is not None:
            value = min(value, self._last_remaining)
        self._last_remaining = value
        return value

    def seconds_remaining(self, now: Optional[float] = None) -> int:
        return int(math.ceil(self.remaining(now)))

    def poll(self, now: Optional[float] = None) -> bool:
        """Fire if the deadline has passed. Returns True only on the firing call."""
        now = self.clock() if now is None else now
        with self._lock:
            if self._fired or self.context.cancelled or now < self.fires_at:
                return False
            self._fired = True
        self._log(
            f"[timer-fire] question={self.question_index} deadline={self.context.deadline:.3f} now={now:.3f}"
        )
        self.on_expire(self.question_index)
        return True

    def cancel(self) -> None:
        if not self.context.cancelled:
            self.context.cancel_token.set()
            self._log(f"[timer-cancel] question={self.question_index}")

    def start(self, spawn: Callable) -> None:
        self._log(
            f"[timer-set] question={self.question_index} duration={self.context.time_limit}s "
            f"deadline={self.context.deadline:.3f}"
        )
        spawn(self._worker)

    def _worker(self) -> None:
        next_heartbeat = self.clock() + self.heartbeat if self.heartbeat > 0 else None
        while not self._fired and not self.context.cancelled:
            now = self.clock()
            if self.poll(now):
                return
            wait = min(self.tick, max(0.0, self.fires_at - now)) or self.tick
            if self.context.cancel_token.wait(wait):
                return
            if next_heartbeat is not None and self.clock() >= next_heartbeat:
                next_heartbeat += self.heartbeat
                self._log(f"[timer-heartbeat] question={self.question_index} remaining={self.seconds_remaining()}s")

    def _log(self, message):
        if self.logger:
            self.logger.info(message)
