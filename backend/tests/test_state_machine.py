import pytest
from sqlalchemy.exc import OperationalError

from quizsync import db
from quizsync.services.sessions.errors import StateError, TransportError
from quizsync.services.sessions.events import GameEnded, GameStarted, QuestionChanged, QuestionStarted, TimeUp
from quizsync.services.sessions.state_machine import Phase


def _names(events):
    return [e.name for _, e in events]


def test_start_game_opens_first_question(make_session, events, clock):
    machine, quiz, _ = make_session()
    game_session = machine.start_game()

    assert machine.phase is Phase.QUESTION_ACTIVE
    assert game_session.current_question_index == 0
    assert game_session.question_started_at == clock.now
    assert machine.seconds_remaining() == 30
    assert _names(events) == ['game_started', 'question_started']
    started = events[0][1]
    assert isinstance(started, GameStarted)
    assert started.quiz_id == quiz.id and started.total_questions == 2
    assert events[1][1] == QuestionStarted(question_index=0, time_limit=30, started_at=clock.now)


def test_start_game_without_questions_fails(make_session, events):
    machine, _, _ = make_session(spec=[])
    with pytest.raises(StateError):
        machine.start_game()
    assert machine.phase is Phase.LOBBY
    assert events == []


def test_start_game_rejects_malformed_quiz(make_session):
    # two correct options
    machine, _, _ = make_session(spec=[('Q', ['a', 'b'], 0, 30)])
    from quizsync.models import Option
    extra = Option.query.filter_by(text='b').first()
    extra.is_correct = True
    db.session.commit()
    with pytest.raises(StateError):
        machine.start_game()
    assert machine.phase is Phase.LOBBY


def test_start_twice_is_rejected(make_session, events):
    machine, _, _ = make_session()
    machine.start_game()
    with pytest.raises(StateError):
        machine.start_game()
    assert _names(events).count('question_started') == 1


def test_close_is_idempotent_and_stale_expiry_ignored(make_session, events):
    machine, _, _ = make_session()
    machine.start_game()
    machine.close_question()
    machine.close_question()
    machine.time_expire(0)
    assert machine.phase is Phase.QUESTION_CLOSED
    assert _names(events).count('time_up') == 1

    machine.advance()
    # expiry for an earlier question must not close the new one
    machine.time_expire(0)
    assert machine.phase is Phase.QUESTION_ACTIVE


def test_advance_while_active_fails(make_session):
    machine, _, _ = make_session()
    machine.start_game()
    with pytest.raises(StateError):
        machine.advance()
    assert machine.phase is Phase.QUESTION_ACTIVE


def test_advance_twice_changes_index_once(make_session, events):
    machine, _, _ = make_session()
    machine.start_game()
    machine.close_question()
    game_session = machine.advance()
    assert game_session.current_question_index == 1
    with pytest.raises(StateError):
        machine.advance()
    assert machine.state()['current_question_index'] == 1
    assert [e for _, e in events if isinstance(e, QuestionChanged)] == [QuestionChanged(question_index=1)]


def test_full_progression_is_monotonic(make_session, events, clock):
    machine, _, _ = make_session()
    seen = [machine.state()['current_question_index']]
    machine.start_game()
    seen.append(machine.state()['current_question_index'])
    clock.advance(30)
    machine.timer.poll()
    seen.append(machine.state()['current_question_index'])
    machine.advance()
    seen.append(machine.state()['current_question_index'])
    machine.close_question()
    machine.advance()
    seen.append(machine.state()['current_question_index'])

    assert seen == [None, 0, 0, 1, None]
    assert machine.phase is Phase.COMPLETED
    assert isinstance(events[-1][1], GameEnded)
    with pytest.raises(StateError):
        machine.advance()


def test_end_game_from_lobby(make_session, events):
    machine, _, _ = make_session()
    machine.end_game()
    assert machine.phase is Phase.COMPLETED
    assert _names(events) == ['game_ended']
    with pytest.raises(StateError):
        machine.end_game()


def test_end_game_cancels_timer(make_session, events, clock):
    machine, _, _ = make_session()
    machine.start_game()
    timer = machine.timer
    machine.end_game()
    clock.advance(60)
    assert timer.poll() is False
    assert 'time_up' not in _names(events)
    assert machine.seconds_remaining() == 0


def test_failed_commit_leaves_state_unchanged(make_session, events, monkeypatch):
    machine, _, _ = make_session()

    def broken_commit():
        raise OperationalError('COMMIT', {}, Exception('database is down'))

    monkeypatch.setattr(db.session, 'commit', broken_commit)
    with pytest.raises(TransportError):
        machine.start_game()
    monkeypatch.undo()

    assert machine.phase is Phase.LOBBY
    assert machine.state()['current_question_index'] is None
    assert machine.timer is None
    assert events == []


def test_deadline_closes_question(make_session, events, clock):
    machine, _, _ = make_session()
    machine.start_game()
    clock.advance(29)
    assert machine.timer.poll() is False
    assert machine.seconds_remaining() == 1
    clock.advance(1)
    assert machine.timer.poll() is True
    assert machine.phase is Phase.QUESTION_CLOSED
    assert [e for _, e in events if isinstance(e, TimeUp)] == [TimeUp(question_index=0)]


def test_deadline_close_retries_with_backoff_then_gives_up(make_session, registry, events, clock, monkeypatch):
    machine, _, _ = make_session()
    machine.start_game()
    first = machine.timer

    def unavailable(session_id):
        raise TransportError('Entity store unavailable')

    monkeypatch.setattr(registry.store, 'get_session', unavailable)
    monkeypatch.setattr(registry.store, 'retry_backoff', 1.0)
    clock.advance(30)
    assert first.poll() is True

    retry = machine.timer
    assert retry is not first
    assert retry.fires_at == clock.now + 1.0
    assert retry.poll() is False

    # second failure exhausts STORE_RETRY_ATTEMPTS (2); no further timer is armed
    clock.advance(1)
    assert retry.poll() is True
    assert machine.timer is retry
    assert retry.poll() is False

    monkeypatch.undo()
    assert machine.phase is Phase.QUESTION_ACTIVE
    machine.close_question()
    assert machine.phase is Phase.QUESTION_CLOSED
    assert [e for _, e in events if isinstance(e, TimeUp)] == [TimeUp(question_index=0)]


def test_completed_sessions_are_released(make_session, registry):
    machines = [make_session()[0] for _ in range(3)]
    for machine in machines:
        assert machine.session_id in registry
        machine.start_game()
        machine.end_game()

    assert all(m.session_id not in registry for m in machines)

    # reports still work from a machine rebuilt on demand, which is not kept
    rebuilt = registry.get(machines[0].session_id)
    assert rebuilt is not machines[0]
    assert rebuilt.phase is Phase.COMPLETED
    assert rebuilt.summary().total_answers == 0
    assert machines[0].session_id not in registry
