"""Per-question answer counters and the answer acceptance path."""

import math
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, NamedTuple, Optional

from quizsync.models import AnswerEvent
from .errors import ValidationError


class TallyKey(NamedTuple):
    question_index: int
    option_id: int


def percentage(count: int, total: int) -> int:
    """Whole percent, rounded half up; 0 when nobody answered."""
    if total <= 0:
        return 0
    return int(math.floor(100.0 * count / total + 0.5))


@dataclass(frozen=True)
class TallySnapshot:
    question_index: int
    counts: Dict[int, int]
    total: int

    @property
    def percentages(self) -> Dict[int, int]:
        return {option_id: percentage(count, self.total) for option_id, count in self.counts.items()}

    def to_dict(self) -> dict:
        # JSON object keys are strings
        return {
            'question_index': self.question_index,
            'counts': {str(k): v for k, v in self.counts.items()},
            'total': self.total,
            'percentages': {str(k): v for k, v in self.percentages.items()},
        }


class Tally:
    """Live counters for a single question, discarded when the question changes."""

    def __init__(self, question_index: int, option_ids: Iterable[int]):
        self.question_index = question_index
        self._counts: Dict[TallyKey, int] = {TallyKey(question_index, o): 0 for o in option_ids}
        self._total = 0
        self._lock = threading.Lock()

    @classmethod
    def from_answers(cls, question_index: int, option_ids: Iterable[int], answers: Iterable[AnswerEvent]) -> 'Tally':
        tally = cls(question_index, option_ids)
        for answer in answers:
            if answer.question_index == question_index:
                tally.increment(answer.option_id)
        return tally

    def increment(self, option_id: int) -> None:
        key = TallyKey(self.question_index, option_id)
        with self._lock:
            if key not in self._counts:
                raise ValidationError('Option does not belong to this question', option_id=option_id)
            self._counts[key] += 1
            self._total += 1

    def replace(self, snapshot: TallySnapshot) -> None:
        if snapshot.question_index != self.question_index:
            return
        with self._lock:
            self._counts = {TallyKey(self.question_index, o): c for o, c in snapshot.counts.items()}
            self._total = snapshot.total

    def snapshot(self) -> TallySnapshot:
        with self._lock:
            counts = {key.option_id: count for key, count in self._counts.items()}
            return TallySnapshot(self.question_index, counts, self._total)


class TallyAggregator:
    """Validates and records answers for one session and keeps the live tally.

    Callers hold the owning session's lock around ``accept`` so the
    duplicate check, the insert and the counter increment happen as one step.
    """

    def __init__(self, session_id: int, store, logger=None):
        self.session_id = session_id
        self.store = store
        self.logger = logger
        self.tally: Optional[Tally] = None

    def scope(self, question_index: int, option_ids: Iterable[int]) -> None:
        """Start a fresh tally for ``question_index``."""
        self.tally = Tally(question_index, option_ids)

    def accept(self, question, question_index: int, started_at: float, player_id: int, option_id: int,
               submitted_at: float) -> AnswerEvent:
        option = next((o for o in question.options if o.id == option_id), None)
        if option is None:
            raise ValidationError('Option does not belong to the current question',
                                  option_id=option_id, question_index=question_index)
        if self.store.get_player(self.session_id, player_id) is None:
            raise ValidationError('Unknown player', player_id=player_id)
        if self.store.find_answer(self.session_id, player_id, question_index) is not None:
            raise ValidationError('Answer already recorded for this question',
                                  player_id=player_id, question_index=question_index)

        time_taken = min(max(submitted_at - started_at, 0.0), float(question.time_limit_seconds))
        event = AnswerEvent(
            session_id=self.session_id,
            player_id=player_id,
            question_index=question_index,
            option_id=option.id,
            time_taken_seconds=time_taken,
            is_correct=bool(option.is_correct),
            submitted_at=submitted_at,
        )
        self.store.insert_answer(event)
        if self.tally is not None and self.tally.question_index == question_index:
            self.tally.increment(option.id)
        return event

    def rebuild(self, question_index: int, option_ids: Iterable[int]) -> TallySnapshot:
        """Authoritative tally for ``question_index`` from the answer log."""
        answers = self.store.retrying(lambda: self.store.list_answers(self.session_id, question_index))
        return Tally.from_answers(question_index, option_ids, answers).snapshot()

    def overwrite(self, snapshot: TallySnapshot) -> bool:
        """Replace the live counters with a reconciled snapshot for the same question."""
        if self.tally is None or self.tally.question_index != snapshot.question_index:
            return False
        before = self.tally.snapshot()
        self.tally.replace(snapshot)
        if before != snapshot and self.logger:
            self.logger.info(
                f"[reconcile-drift] session={self.session_id} question={snapshot.question_index} "
                f"live_total={before.total} log_total={snapshot.total}"
            )
        return True

    def live(self, question_index: int) -> Optional[TallySnapshot]:
        if self.tally is None or self.tally.question_index != question_index:
            return None
        return self.tally.snapshot()
