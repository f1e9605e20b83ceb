"""Lifecycle events carried by the broadcast channel.

One frozen dataclass per event name. Events are hints for observers to
re-pull state; they never carry tallies or scores.
"""

from dataclasses import asdict, dataclass, fields
from typing import ClassVar, Dict, Union

from .errors import ValidationError


@dataclass(frozen=True)
class GameStarted:
    name: ClassVar[str] = 'game_started'
    quiz_id: int
    total_questions: int


@dataclass(frozen=True)
class QuestionStarted:
    name: ClassVar[str] = 'question_started'
    question_index: int
    time_limit: int
    # Lets mirrored displays compute the same deadline as the host
    started_at: float


@dataclass(frozen=True)
class QuestionChanged:
    name: ClassVar[str] = 'question_changed'
    question_index: int


@dataclass(frozen=True)
class TimeUp:
    name: ClassVar[str] = 'time_up'
    question_index: int


@dataclass(frozen=True)
class GameEnded:
    name: ClassVar[str] = 'game_ended'


SessionEvent = Union[GameStarted, QuestionStarted, QuestionChanged, TimeUp, GameEnded]

EVENT_TYPES: Dict[str, type] = {
    cls.name: cls for cls in (GameStarted, QuestionStarted, QuestionChanged, TimeUp, GameEnded)
}


def validate_event(event) -> None:
    """Reject anything that is not a well-formed lifecycle event."""
    if type(event) not in EVENT_TYPES.values():
        raise ValidationError('Unknown broadcast event', event=repr(event))
    for f in fields(event):
        value = getattr(event, f.name)
        if f.type is int or f.type == 'int':
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValidationError(f'{event.name}.{f.name} must be a non-negative integer', event=event.name)
        elif f.type is float or f.type == 'float':
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ValidationError(f'{event.name}.{f.name} must be a number', event=event.name)
    if isinstance(event, GameStarted) and event.total_questions < 1:
        raise ValidationError('game_started requires at least one question', event=event.name)


def event_payload(event) -> dict:
    return asdict(event)


def event_from_payload(name: str, payload: dict):
    """Parse an incoming ``(name, payload)`` pair back into an event."""
    cls = EVENT_TYPES.get(name)
    if cls is None:
        raise ValidationError('Unknown broadcast event', event=name)
    try:
        event = cls(**{f.name: payload[f.name] for f in fields(cls)})
    except (KeyError, TypeError) as exc:
        raise ValidationError(f'Malformed {name} payload', event=name) from exc
    validate_event(event)
    return event
