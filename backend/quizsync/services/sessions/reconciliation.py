"""Periodic re-derivation of the live tally from the answer log."""

import threading
from typing import Callable

from .errors import TransportError
from .timer import ActiveQuestionContext


class ReconciliationLoop:
    """Backstop that keeps the host's tally converging to the answer log.

    ``reconcile(question_index)`` is supplied by the session machine; it
    rebuilds and applies the tally under the session lock and returns False
    once ``question_index`` is no longer the live open question, which ends
    the loop. ``wake`` requests an early pass (push hint).
    """

    def __init__(self, app, context: ActiveQuestionContext, reconcile: Callable[[int], bool],
                 interval: float = 1.0, logger=None):
        self.app = app
        self.context = context
        self.reconcile = reconcile
        self.interval = interval
        self.logger = logger
        self._wake = threading.Event()
        self.passes = 0
        self.stopped = False

    @property
    def question_index(self) -> int:
        return self.context.question_index

    def wake(self) -> None:
        self._wake.set()

    def stop(self) -> None:
        self.stopped = True
        self._wake.set()

    def run_once(self) -> bool:
        """One pass. Returns False when this loop should terminate."""
        if self.stopped or self.context.cancelled:
            return False
        try:
            live = self.reconcile(self.question_index)
        except TransportError as exc:
            # Keep the last good tally; the next pass tries again
            if self.logger:
                self.logger.warning(f"[reconcile-fail] question={self.question_index} error={exc.message}")
            return True
        if not live:
            self.stopped = True
            if self.logger:
                self.logger.info(f"[reconcile-stop] question={self.question_index} stale")
            return False
        self.passes += 1
        return True

    def start(self, spawn: Callable) -> None:
        spawn(self._worker)

    def _worker(self) -> None:
        while not self.stopped and not self.context.cancelled:
            self._wake.wait(self.interval)
            self._wake.clear()
            if self.stopped or self.context.cancelled:
                return
            with self.app.app_context():
                if not self.run_once():
                    return
