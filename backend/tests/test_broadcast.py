import pytest

from quizsync.services.sessions.broadcast import BroadcastChannel, ObserverView
from quizsync.services.sessions.errors import ValidationError
from quizsync.services.sessions.events import (
    GameEnded, GameStarted, QuestionChanged, QuestionStarted, TimeUp, event_from_payload, validate_event,
)


def test_publish_rejects_malformed_events():
    channel = BroadcastChannel()
    with pytest.raises(ValidationError):
        channel.publish(1, {'name': 'question_started', 'question_index': 0})
    with pytest.raises(ValidationError):
        channel.publish(1, TimeUp(question_index=-1))
    with pytest.raises(ValidationError):
        validate_event(GameStarted(quiz_id=1, total_questions=0))


def test_payload_parsing_checks_shape():
    event = event_from_payload('question_started', {'question_index': 2, 'time_limit': 30, 'started_at': 5.0})
    assert event == QuestionStarted(question_index=2, time_limit=30, started_at=5.0)
    with pytest.raises(ValidationError):
        event_from_payload('question_started', {'question_index': 2})
    with pytest.raises(ValidationError):
        event_from_payload('answer_submitted', {})


def test_subscribers_are_scoped_and_isolated():
    channel = BroadcastChannel()
    got = []

    def broken(session_id, event):
        raise RuntimeError('display crashed')

    channel.subscribe(1, broken)
    unsubscribe = channel.subscribe(1, lambda sid, e: got.append((sid, e)))
    channel.subscribe(2, lambda sid, e: got.append((sid, e)))

    channel.publish(1, TimeUp(question_index=0))
    assert got == [(1, TimeUp(question_index=0))]

    unsubscribe()
    channel.publish(1, GameEnded())
    assert got == [(1, TimeUp(question_index=0))]


def test_observer_is_idempotent_under_duplicates_and_reordering():
    refreshed = []
    view = ObserverView(refreshed.append)

    assert view.apply(QuestionStarted(question_index=0, time_limit=30, started_at=10.0))
    assert not view.apply(QuestionStarted(question_index=0, time_limit=30, started_at=10.0))
    assert view.apply(TimeUp(question_index=0))
    assert not view.apply(TimeUp(question_index=0))
    assert view.apply(QuestionChanged(question_index=1))
    # late delivery for the previous question
    assert not view.apply(TimeUp(question_index=0))
    assert view.apply(QuestionStarted(question_index=1, time_limit=20, started_at=50.0))
    assert not view.apply(QuestionChanged(question_index=1))

    assert refreshed == [0, 0, 1, 1]
    assert view.question_index == 1 and view.time_limit == 20 and not view.time_up

    assert view.apply(GameEnded())
    assert not view.apply(QuestionStarted(question_index=2, time_limit=20, started_at=90.0))


def test_machine_events_drive_observer(make_session, registry, clock):
    machine, _, _ = make_session()
    refreshed = []
    view = ObserverView(refreshed.append)
    registry.channel.subscribe(machine.session_id, view)

    machine.start_game()
    clock.advance(30)
    machine.timer.poll()
    machine.advance()

    assert view.question_index == 1
    assert refreshed == [0, 0, 1, 1]
