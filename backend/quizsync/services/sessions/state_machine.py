"""Question lifecycle for one game session.

The machine is the only writer of GameSession state. Every command runs
under a per-session lock, is validated against the persisted state, commits,
and only then arms timers or announces the change.

    lobby --start_game--> question_active(0)
    question_active(i) --time_expire | close_question--> question_closed(i)
    question_closed(i) --advance--> question_active(i+1) | completed
    any but completed --end_game--> completed
"""

import threading
import time
from enum import Enum
from typing import Callable, Optional

from flask import has_app_context

from quizsync.models import ACTIVE, COMPLETED, LOBBY
from .errors import AuthorizationError, StateError, TransportError, ValidationError
from .events import GameEnded, GameStarted, QuestionChanged, QuestionStarted, TimeUp
from .reconciliation import ReconciliationLoop
from .scoring import build_leaderboard
from .summary import build_summary
from .tally import TallyAggregator, TallySnapshot
from .timer import ActiveQuestionContext, DeadlineTimer

MIN_TIME_LIMIT = 5
MAX_TIME_LIMIT = 120
MIN_OPTIONS = 2
MAX_OPTIONS = 10


class Phase(str, Enum):
    LOBBY = 'lobby'
    QUESTION_ACTIVE = 'question_active'
    QUESTION_CLOSED = 'question_closed'
    COMPLETED = 'completed'


def phase_of(game_session) -> Phase:
    if game_session.status == LOBBY:
        return Phase.LOBBY
    if game_session.status == COMPLETED:
        return Phase.COMPLETED
    return Phase.QUESTION_ACTIVE if game_session.question_open else Phase.QUESTION_CLOSED


def check_playable(quiz) -> None:
    """A quiz can be hosted only if every question is well formed."""
    if not quiz.questions:
        raise StateError('Quiz has no questions', quiz_id=quiz.id)
    for index, question in enumerate(quiz.questions):
        if not MIN_TIME_LIMIT <= question.time_limit_seconds <= MAX_TIME_LIMIT:
            raise StateError('Question time limit out of range', question_index=index)
        if not MIN_OPTIONS <= len(question.options) <= MAX_OPTIONS:
            raise StateError('Question needs between 2 and 10 options', question_index=index)
        if sum(1 for o in question.options if o.is_correct) != 1:
            raise StateError('Question needs exactly one correct option', question_index=index)


class SessionMachine:
    def __init__(self, app, session_id: int, store, channel, clock: Callable[[], float] = time.time,
                 spawn: Optional[Callable] = None, on_complete: Optional[Callable[[int], None]] = None):
        self.app = app
        self.session_id = session_id
        self.store = store
        self.channel = channel
        self.clock = clock
        # None: background tasks are not started and tests drive poll()/run_once()
        self.spawn = spawn
        self.on_complete = on_complete
        self.logger = app.logger
        self.aggregator = TallyAggregator(session_id, store, logger=self.logger)
        self.active: Optional[ActiveQuestionContext] = None
        self.timer: Optional[DeadlineTimer] = None
        self.reconciler: Optional[ReconciliationLoop] = None
        self._quiz = None
        self._expire_failures = 0
        self._lock = threading.RLock()

    # ---- reads ----

    def _session(self):
        return self.store.get_session(self.session_id)

    def quiz(self, game_session=None):
        if self._quiz is None:
            game_session = game_session or self._session()
            self._quiz = self.store.load_quiz(game_session.quiz_id)
        return self._quiz

    @property
    def phase(self) -> Phase:
        with self._lock:
            return phase_of(self._session())

    def ensure_host(self, user_id) -> None:
        if self._session().host_id != user_id:
            raise AuthorizationError('Only the host may control this session', session_id=self.session_id)

    def seconds_remaining(self) -> int:
        with self._lock:
            if self.timer is None or self.active is None:
                return 0
            return self.timer.seconds_remaining()

    def state(self) -> dict:
        with self._lock:
            game_session = self._session()
            phase = phase_of(game_session)
            payload = game_session.to_dict()
            payload['phase'] = phase.value
            payload['total_questions'] = len(self.quiz(game_session).questions)
            payload['seconds_remaining'] = self.seconds_remaining() if phase is Phase.QUESTION_ACTIVE else 0
            payload['deadline'] = self.active.deadline if (self.active and phase is Phase.QUESTION_ACTIVE) else None
            index = game_session.current_question_index
            live = None
            payload['question'] = None
            if index is not None:
                live = self.aggregator.live(index)
                # correct option is revealed once the question has closed
                payload['question'] = self.quiz(game_session).questions[index].to_dict(
                    reveal=phase is Phase.QUESTION_CLOSED
                )
            payload['tally'] = live.to_dict() if live else None
            return payload

    # ---- host commands ----

    def start_game(self):
        with self._lock:
            game_session = self._session()
            phase = phase_of(game_session)
            if phase is not Phase.LOBBY:
                raise StateError(f'Cannot start a session that is {phase.value}', phase=phase.value)
            quiz = self.quiz(game_session)
            check_playable(quiz)
            first = quiz.questions[0]
            now = self.clock()
            game_session.status = ACTIVE
            game_session.current_question_index = 0
            game_session.question_started_at = now
            game_session.question_open = True
            self.store.save_session(game_session)
            self._log_transition(Phase.LOBBY, Phase.QUESTION_ACTIVE, 0)

            self._open_question(0, first, now)
            self._publish(GameStarted(quiz_id=quiz.id, total_questions=len(quiz.questions)))
            self._publish(QuestionStarted(question_index=0, time_limit=first.time_limit_seconds, started_at=now))
            return game_session

    def close_question(self):
        """Host-forced close. Closing an already closed question is a no-op."""
        with self._lock:
            game_session = self._session()
            phase = phase_of(game_session)
            if phase is Phase.QUESTION_CLOSED:
                return game_session
            if phase is not Phase.QUESTION_ACTIVE:
                raise StateError(f'No open question to close while {phase.value}', phase=phase.value)
            return self._close(game_session, reason='host')

    def time_expire(self, question_index: int):
        """Deadline signal. Ignored unless ``question_index`` is the open question."""
        with self._lock:
            game_session = self._session()
            if phase_of(game_session) is not Phase.QUESTION_ACTIVE \
                    or game_session.current_question_index != question_index:
                self.logger.info(
                    f"[timer-abort] session={self.session_id} question={question_index} "
                    f"live={game_session.current_question_index} status={game_session.status}"
                )
                return game_session
            return self._close(game_session, reason='deadline')

    def advance(self):
        with self._lock:
            game_session = self._session()
            phase = phase_of(game_session)
            if phase is Phase.QUESTION_ACTIVE:
                raise StateError('Close the current question before advancing', phase=phase.value)
            if phase is not Phase.QUESTION_CLOSED:
                raise StateError(f'Cannot advance a session that is {phase.value}', phase=phase.value)
            quiz = self.quiz(game_session)
            index = game_session.current_question_index
            nxt = index + 1
            if nxt >= len(quiz.questions):
                return self._complete(game_session, phase)

            question = quiz.questions[nxt]
            now = self.clock()
            game_session.current_question_index = nxt
            game_session.question_started_at = now
            game_session.question_open = True
            self.store.save_session(game_session)
            self._log_transition(phase, Phase.QUESTION_ACTIVE, nxt)

            self._open_question(nxt, question, now)
            self._publish(QuestionChanged(question_index=nxt))
            self._publish(QuestionStarted(question_index=nxt, time_limit=question.time_limit_seconds, started_at=now))
            return game_session

    def end_game(self):
        with self._lock:
            game_session = self._session()
            phase = phase_of(game_session)
            if phase is Phase.COMPLETED:
                raise StateError('Game already completed', phase=phase.value)
            return self._complete(game_session, phase)

    # ---- participants ----

    def submit_answer(self, player_id: int, question_index: int, option_id: int,
                      submitted_at: Optional[float] = None):
        with self._lock:
            try:
                game_session = self._session()
                if game_session.status != ACTIVE:
                    raise ValidationError('Session is not accepting answers', status=game_session.status)
                if question_index != game_session.current_question_index:
                    raise ValidationError(
                        'Answer is for a question that is not current',
                        question_index=question_index,
                        current_question_index=game_session.current_question_index,
                    )
                if not game_session.question_open:
                    raise ValidationError('Question is closed', question_index=question_index)
                question = self.quiz(game_session).questions[question_index]
                return self.aggregator.accept(
                    question,
                    question_index,
                    game_session.question_started_at,
                    player_id,
                    option_id,
                    self.clock() if submitted_at is None else submitted_at,
                )
            except ValidationError as exc:
                self.logger.info(
                    f"[answer-rejected] session={self.session_id} player={player_id} "
                    f"question={question_index} reason={exc.message}"
                )
                raise

    def notify_answer(self, question_index: int) -> bool:
        """Push hint from a participant client: pull the tally sooner."""
        reconciler = self.reconciler
        if reconciler is None or reconciler.question_index != question_index:
            return False
        reconciler.wake()
        return True

    # ---- tallies, scores, reports ----

    def get_tally(self, question_index: int) -> TallySnapshot:
        with self._lock:
            game_session = self._session()
            quiz = self.quiz(game_session)
            if not 0 <= question_index < len(quiz.questions):
                raise ValidationError('Unknown question index', question_index=question_index)
            if phase_of(game_session) is Phase.QUESTION_ACTIVE \
                    and question_index == game_session.current_question_index:
                live = self.aggregator.live(question_index)
                if live is not None:
                    return live
        # Frozen tally straight from the answer log
        return self.aggregator.rebuild(question_index, quiz.questions[question_index].option_ids)

    def reconcile(self, question_index: int) -> bool:
        """Overwrite the live tally from the log; False once the question is no longer open."""
        with self._lock:
            game_session = self._session()
            if phase_of(game_session) is not Phase.QUESTION_ACTIVE \
                    or game_session.current_question_index != question_index:
                return False
            question = self.quiz(game_session).questions[question_index]
            snapshot = self.aggregator.rebuild(question_index, question.option_ids)
            self.aggregator.overwrite(snapshot)
            return True

    def leaderboard(self):
        players = self.store.retrying(lambda: self.store.list_players(self.session_id))
        answers = self.store.retrying(lambda: self.store.list_answers(self.session_id))
        return build_leaderboard(players, answers)

    def summary(self):
        with self._lock:
            game_session = self._session()
            if game_session.status != COMPLETED:
                raise StateError('Summary is available once the game is completed', status=game_session.status)
            quiz = self.quiz(game_session)
        players = self.store.retrying(lambda: self.store.list_players(self.session_id))
        answers = self.store.retrying(lambda: self.store.list_answers(self.session_id))
        return build_summary(quiz, answers, players)

    # ---- recovery ----

    def restore(self) -> None:
        """Rebuild timers and tallies for a session that was already running."""
        with self._lock:
            game_session = self._session()
            phase = phase_of(game_session)
            if phase not in (Phase.QUESTION_ACTIVE, Phase.QUESTION_CLOSED):
                return
            index = game_session.current_question_index
            question = self.quiz(game_session).questions[index]
            self.aggregator.scope(index, question.option_ids)
            self.aggregator.overwrite(self.aggregator.rebuild(index, question.option_ids))
            if phase is Phase.QUESTION_ACTIVE:
                self._open_question(index, question, game_session.question_started_at, fresh_tally=False)
            self.logger.info(
                f"[restore] session={self.session_id} phase={phase.value} question={index} "
                f"remaining={self.seconds_remaining()}s"
            )

    def shutdown(self) -> None:
        """Stop background tasks without touching session state."""
        with self._lock:
            self._teardown()

    # ---- internals ----

    def _open_question(self, index, question, started_at, fresh_tally=True):
        self._teardown()
        self._expire_failures = 0
        context = ActiveQuestionContext(index, started_at, question.time_limit_seconds)
        self.active = context
        if fresh_tally:
            self.aggregator.scope(index, question.option_ids)
        self.timer = self._make_timer(context)
        self.reconciler = ReconciliationLoop(
            self.app, context, self.reconcile,
            interval=float(self.app.config.get('RECONCILE_INTERVAL_SEC', 1.0)),
            logger=self.logger,
        )
        if self.spawn is not None:
            self.timer.start(self.spawn)
            self.reconciler.start(self.spawn)

    def _make_timer(self, context, not_before=0.0):
        return DeadlineTimer(
            context,
            self._on_deadline,
            clock=self.clock,
            tick=float(self.app.config.get('TIMER_TICK_SEC', 0.25)),
            heartbeat=int(self.app.config.get('TIMER_HEARTBEAT_SEC', 0)),
            logger=self.logger,
            not_before=not_before,
        )

    def _on_deadline(self, question_index):
        try:
            if has_app_context():
                self.time_expire(question_index)
            else:
                with self.app.app_context():
                    self.time_expire(question_index)
        except TransportError as exc:
            with self._lock:
                if self.active is None or self.active.question_index != question_index or self.active.cancelled:
                    return
                self._expire_failures += 1
                attempt = self._expire_failures
                if attempt >= self.store.retry_attempts:
                    # Left open; the next host command or restore closes it
                    self.logger.error(
                        f"[timer-giveup] session={self.session_id} question={question_index} "
                        f"attempts={attempt} error={exc.message}"
                    )
                    return
                delay = self.store.retry_backoff * (2 ** (attempt - 1))
                self.logger.warning(
                    f"[timer-retry] session={self.session_id} question={question_index} "
                    f"attempt={attempt} delay={delay:.2f}s error={exc.message}"
                )
                self.timer = self._make_timer(self.active, not_before=self.clock() + delay)
                if self.spawn is not None:
                    self.timer.start(self.spawn)

    def _close(self, game_session, reason):
        index = game_session.current_question_index
        game_session.question_open = False
        self.store.save_session(game_session)
        self._log_transition(Phase.QUESTION_ACTIVE, Phase.QUESTION_CLOSED, index, reason=reason)
        self._teardown()
        self._final_reconcile(index)
        self._publish(TimeUp(question_index=index))
        return game_session

    def _complete(self, game_session, phase):
        index = game_session.current_question_index
        game_session.status = COMPLETED
        game_session.current_question_index = None
        game_session.question_open = False
        self.store.save_session(game_session)
        self._log_transition(phase, Phase.COMPLETED, index)
        self._teardown()
        if phase is Phase.QUESTION_ACTIVE:
            self._final_reconcile(index)
        try:
            final = self.leaderboard()
            top = final[0] if final else None
            self.logger.info(
                f"[final-scores] session={self.session_id} players={len(final)} "
                f"leader={top.player_id if top else None} score={top.score if top else 0}"
            )
        except TransportError as exc:
            self.logger.warning(f"[final-scores] session={self.session_id} unavailable error={exc.message}")
        self._publish(GameEnded())
        if self.on_complete is not None:
            self.on_complete(self.session_id)
        return game_session

    def _final_reconcile(self, index):
        question = self.quiz().questions[index]
        try:
            self.aggregator.overwrite(self.aggregator.rebuild(index, question.option_ids))
        except TransportError as exc:
            self.logger.warning(f"[reconcile-fail] session={self.session_id} question={index} final error={exc.message}")

    def _teardown(self):
        if self.timer is not None:
            self.timer.cancel()
        if self.reconciler is not None:
            self.reconciler.stop()
        if self.active is not None:
            self.active.cancel_token.set()
        self.active = None

    def _publish(self, event):
        self.channel.publish(self.session_id, event)

    def _log_transition(self, source, target, index, reason=None):
        suffix = f" reason={reason}" if reason else ''
        self.logger.info(
            f"[state] session={self.session_id} {source.value} -> {target.value} question={index}{suffix}"
        )
