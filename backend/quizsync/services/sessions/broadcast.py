"""Fire-and-forget fan-out of lifecycle events to secondary observers."""

import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from .events import GameEnded, QuestionChanged, QuestionStarted, TimeUp, event_payload, validate_event


def session_room(session_id: int) -> str:
    return f"session:{session_id}"


class BroadcastChannel:
    """Publish/subscribe keyed by session id.

    Events go out over Socket.IO to the session room and to in-process
    subscribers. Delivery is at-least-once at best; publishing never raises
    and never waits on a subscriber.
    """

    def __init__(self, socketio=None, namespace: str = '/ws', spawn: Optional[Callable] = None, logger=None):
        self.socketio = socketio
        self.namespace = namespace
        # None means handlers run inline (tests)
        self.spawn = spawn
        self.logger = logger
        self._subscribers: Dict[int, List[Callable]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, session_id: int, handler: Callable) -> Callable[[], None]:
        with self._lock:
            self._subscribers[session_id].append(handler)

        def unsubscribe():
            with self._lock:
                handlers = self._subscribers.get(session_id, [])
                if handler in handlers:
                    handlers.remove(handler)
                if not handlers:
                    self._subscribers.pop(session_id, None)
        return unsubscribe

    def publish(self, session_id: int, event) -> None:
        validate_event(event)
        payload = dict(event_payload(event), session_id=session_id)
        if self.socketio is not None:
            try:
                self.socketio.emit(event.name, payload, to=session_room(session_id), namespace=self.namespace)
            except Exception as exc:
                self._warn(f"[broadcast-fail] session={session_id} event={event.name} error={exc}")
        with self._lock:
            handlers = list(self._subscribers.get(session_id, []))
        for handler in handlers:
            if self.spawn is None:
                self._deliver(handler, session_id, event)
            else:
                self.spawn(self._deliver, handler, session_id, event)

    def _deliver(self, handler, session_id, event):
        try:
            handler(session_id, event)
        except Exception as exc:
            self._warn(f"[broadcast-handler-error] session={session_id} event={event.name} error={exc}")

    def _warn(self, message):
        if self.logger:
            self.logger.warning(message)


class ObserverView:
    """Idempotent consumer for a mirrored display.

    Tracks the newest question index it has seen and asks ``refresh`` to
    re-pull the tally for that index. Duplicates and events for older
    questions are ignored, so replays and reordering are harmless.
    """

    def __init__(self, refresh: Callable[[int], None]):
        self.refresh = refresh
        self.question_index: Optional[int] = None
        self.time_up = False
        self.ended = False
        self.started_at: Optional[float] = None
        self.time_limit: Optional[int] = None

    def __call__(self, session_id, event) -> None:
        self.apply(event)

    def apply(self, event) -> bool:
        """Apply one event; returns False when it was stale or a repeat."""
        if self.ended:
            return False
        if isinstance(event, GameEnded):
            self.ended = True
            return True
        index = getattr(event, 'question_index', None)
        if index is None:
            return False
        if self.question_index is not None and index < self.question_index:
            return False
        if isinstance(event, (QuestionStarted, QuestionChanged)):
            if index == self.question_index:
                if isinstance(event, QuestionChanged) or event.started_at == self.started_at:
                    return False
            else:
                self.time_up = False
            self.question_index = index
            if isinstance(event, QuestionStarted):
                self.started_at = event.started_at
                self.time_limit = event.time_limit
            self.refresh(index)
            return True
        if isinstance(event, TimeUp):
            if index == self.question_index and self.time_up:
                return False
            self.question_index = index
            self.time_up = True
            self.refresh(index)
            return True
        return False
