import threading
import time
from typing import Dict

from quizsync import socketio
from quizsync.models import ACTIVE, COMPLETED, LOBBY, GameSession
from .broadcast import BroadcastChannel
from .errors import ValidationError
from .state_machine import SessionMachine
from .store import EntityStore


class SessionRegistry:
    """Live session machines of one application, created on first use.

    A machine built for a session that was already running restores its
    timer and tally from persisted state, which is how the host process
    recovers after a restart.
    """

    def __init__(self, app):
        self.app = app
        self.store = EntityStore(
            logger=app.logger,
            retry_attempts=app.config.get('STORE_RETRY_ATTEMPTS', 3),
            retry_backoff=app.config.get('STORE_RETRY_BACKOFF_SEC', 0.2),
        )
        self.channel = BroadcastChannel(socketio, namespace='/ws', spawn=self._spawner(), logger=app.logger)
        self._machines: Dict[int, SessionMachine] = {}
        self._lock = threading.Lock()

    def _spawner(self):
        if self.app.config.get('TESTING') and not self.app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
            return None
        return socketio.start_background_task

    def get(self, session_id: int) -> SessionMachine:
        with self._lock:
            machine = self._machines.get(session_id)
            if machine is None:
                game_session = self.store.get_session(session_id)
                machine = SessionMachine(
                    self.app,
                    session_id,
                    self.store,
                    self.channel,
                    clock=self.app.config.get('SESSION_CLOCK') or time.time,
                    spawn=self._spawner(),
                    on_complete=self._release,
                )
                machine.restore()
                # Completed sessions only serve reports and are rebuilt on demand
                if game_session.status != COMPLETED:
                    self._machines[session_id] = machine
            return machine

    def __contains__(self, session_id) -> bool:
        with self._lock:
            return session_id in self._machines

    def _release(self, session_id: int) -> None:
        with self._lock:
            released = self._machines.pop(session_id, None) is not None
        if released:
            self.app.logger.info(f"[session-release] session={session_id}")

    def create_session(self, quiz_id: int, host_id: int) -> GameSession:
        self.store.get_quiz(quiz_id)
        game_session = self.store.create_session(quiz_id, host_id, pin_length=self.app.config.get('PIN_LENGTH', 6))
        self.app.logger.info(f"[session-create] session={game_session.id} quiz={quiz_id} pin={game_session.pin}")
        return game_session

    def join(self, pin: str, display_name: str):
        game_session = self.store.get_session_by_pin(pin)
        if game_session.status not in (LOBBY, ACTIVE):
            raise ValidationError('This session is no longer accepting players', status=game_session.status)
        return self.store.add_player(game_session.id, display_name)

    def forget(self, session_id: int) -> None:
        """Drop the in-memory machine; the next ``get`` rebuilds it from the store."""
        with self._lock:
            machine = self._machines.pop(session_id, None)
        if machine is not None:
            machine.shutdown()

    def shutdown(self) -> None:
        with self._lock:
            machines = list(self._machines.values())
            self._machines.clear()
        for machine in machines:
            machine.shutdown()
