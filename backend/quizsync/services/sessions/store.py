"""Narrow read/write contract over the relational entity store.

The session services never touch ``db.session`` directly; everything goes
through :class:`EntityStore` so that database failures surface as
:class:`TransportError` and duplicate answers as :class:`ValidationError`.
"""

import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from quizsync import db
from quizsync.models import AnswerEvent, GameSession, Player, Quiz
from .errors import NotFoundError, TransportError, ValidationError

T = TypeVar('T')


# Detached, immutable copies of the authored quiz. Questions are fixed once a
# session starts, so machines keep these instead of ORM rows bound to one
# database session.

@dataclass(frozen=True)
class OptionSpec:
    id: int
    text: str
    is_correct: bool

    def to_dict(self, reveal=False):
        data = {'id': self.id, 'text': self.text}
        if reveal:
            data['is_correct'] = self.is_correct
        return data


@dataclass(frozen=True)
class QuestionSpec:
    id: int
    text: str
    time_limit_seconds: int
    options: Tuple[OptionSpec, ...]

    @property
    def option_ids(self) -> List[int]:
        return [o.id for o in self.options]

    def to_dict(self, reveal=False) -> dict:
        return {
            'id': self.id,
            'text': self.text,
            'time_limit_seconds': self.time_limit_seconds,
            'options': [o.to_dict(reveal=reveal) for o in self.options],
        }


@dataclass(frozen=True)
class QuizSpec:
    id: int
    title: str
    description: Optional[str]
    questions: Tuple[QuestionSpec, ...]


class EntityStore:
    def __init__(self, logger=None, retry_attempts: int = 3, retry_backoff: float = 0.2, sleep=time.sleep):
        self.logger = logger
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_backoff = float(retry_backoff)
        self._sleep = sleep

    # ---- reads ----

    def get_session(self, session_id: int) -> GameSession:
        game_session = self._read(lambda: db.session.get(GameSession, session_id))
        if game_session is None:
            raise NotFoundError('Session not found', session_id=session_id)
        return game_session

    def get_session_by_pin(self, pin: str) -> GameSession:
        game_session = self._read(lambda: GameSession.query.filter_by(pin=pin).first())
        if game_session is None:
            raise NotFoundError('Session not found', pin=pin)
        return game_session

    def get_quiz(self, quiz_id: int) -> Quiz:
        quiz = self._read(lambda: db.session.get(Quiz, quiz_id))
        if quiz is None:
            raise NotFoundError('Quiz not found', quiz_id=quiz_id)
        return quiz

    def load_quiz(self, quiz_id: int) -> QuizSpec:
        quiz = self.get_quiz(quiz_id)

        def copy():
            return QuizSpec(
                id=quiz.id,
                title=quiz.title,
                description=quiz.description,
                questions=tuple(
                    QuestionSpec(
                        id=q.id,
                        text=q.text,
                        time_limit_seconds=q.time_limit_seconds,
                        options=tuple(OptionSpec(o.id, o.text, bool(o.is_correct)) for o in q.options),
                    )
                    for q in quiz.questions
                ),
            )
        return self._read(copy)

    def get_player(self, session_id: int, player_id: int) -> Optional[Player]:
        return self._read(lambda: Player.query.filter_by(id=player_id, session_id=session_id).first())

    def list_players(self, session_id: int) -> List[Player]:
        return self._read(lambda: Player.query.filter_by(session_id=session_id).order_by(Player.id).all())

    def list_answers(self, session_id: int, question_index: Optional[int] = None) -> List[AnswerEvent]:
        def query():
            q = AnswerEvent.query.filter_by(session_id=session_id)
            if question_index is not None:
                q = q.filter_by(question_index=question_index)
            return q.order_by(AnswerEvent.id).all()
        return self._read(query)

    def find_answer(self, session_id: int, player_id: int, question_index: int) -> Optional[AnswerEvent]:
        return self._read(
            lambda: AnswerEvent.query.filter_by(
                session_id=session_id, player_id=player_id, question_index=question_index
            ).first()
        )

    def retrying(self, fn: Callable[[], T]) -> T:
        """Run ``fn`` again on TransportError with exponential backoff."""
        delay = self.retry_backoff
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return fn()
            except TransportError as exc:
                if attempt == self.retry_attempts:
                    raise
                if self.logger:
                    self.logger.warning(
                        f"[store-retry] attempt={attempt}/{self.retry_attempts} delay={delay:.2f}s error={exc.message}"
                    )
                self._sleep(delay)
                delay *= 2

    # ---- writes ----

    def create_session(self, quiz_id: int, host_id: int, pin_length: int = 6) -> GameSession:
        def write():
            game_session = GameSession(quiz_id=quiz_id, host_id=host_id, pin_length=pin_length)
            db.session.add(game_session)
            return game_session
        return self._write(write)

    def add_player(self, session_id: int, display_name: str) -> Player:
        return self._write(lambda: _added(Player(session_id=session_id, display_name=display_name)))

    def save_session(self, game_session: GameSession) -> GameSession:
        return self._write(lambda: _added(game_session))

    def insert_answer(self, event: AnswerEvent) -> AnswerEvent:
        try:
            db.session.add(event)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ValidationError(
                'Answer already recorded for this question',
                player_id=event.player_id,
                question_index=event.question_index,
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise TransportError('Entity store unavailable') from exc
        return event

    # ---- internals ----

    def _read(self, fn):
        try:
            return fn()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise TransportError('Entity store unavailable') from exc

    def _write(self, fn):
        try:
            result = fn()
            db.session.commit()
            return result
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise TransportError('Entity store unavailable') from exc


def _added(obj):
    db.session.add(obj)
    return obj
